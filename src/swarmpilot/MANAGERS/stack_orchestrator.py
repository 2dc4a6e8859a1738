# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.


"""
Orchestration of multi-service stacks on top of the service orchestrator.
"""
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from ..errors import ConflictError, NotFoundError, OrchestrationError, ValidationError, validate_input
from ..MODELS.replica import (
    BulkLogOptions,
    BulkLogResult,
    LogOptions,
    ReplicaSet,
    ServiceLogEntry,
    StackLogsResult,
)
from ..MODELS.service_spec import MountConfig, NetworkOptions, ServicePatch, ServiceSpec
from ..MODELS.stack import Stack, StackConfig, StackNetwork, StackPatch, StackService, StackStatus
from ..UTILS.batching import run_in_batches
from ..UTILS.logging import get_logger
from .network_registrar import NetworkRegistrar
from .resource_policy import ResourcePolicyEnforcer
from .service_orchestrator import ServiceOrchestrator
from .stack_registry import InMemoryStackRepository, StackRepository
from .volume_manager import VolumeManager

logger = get_logger(__name__, prefix="Stack")

STACK_LOG_BATCH_SIZE = 3
STACK_LOG_DEFAULT_TAIL = 50
STACK_NAMESPACE_LABEL = "com.docker.stack.namespace"


class StackOrchestrator:
    """
    Deploys, updates and removes stacks of services.

    Member services are named ``{stack}_{service}`` on the engine. Member
    operations within one create or delete run strictly one after another.
    A failed create removes whatever it had deployed and leaves the registry
    untouched.
    """
    def __init__(self,
                 services: ServiceOrchestrator,
                 registrar: Optional[NetworkRegistrar] = None,
                 repository: Optional[StackRepository] = None,
                 volumes: Optional[VolumeManager] = None):
        """
        Initializes the stack orchestrator.

        :param services: Orchestrator used for every member service call.
        :param registrar: Network registrar; defaults to the one of ``services``.
        :param repository: Stack record store; defaults to an in-memory one.
        :param volumes: Volume preparation; defaults to a fresh VolumeManager.
        """
        self.services = services
        self.registrar = registrar or services.registrar
        self.repository = repository if repository is not None else InMemoryStackRepository()
        self.volumes = volumes or VolumeManager()
        self._pending: Set[str] = set()

    # Lookups

    def list_stacks(self) -> List[Stack]:
        return self.repository.list()

    def get_stack(self, name: str) -> Stack:
        stack = self.repository.get(name)
        if stack is None:
            raise NotFoundError(f"Stack {name} not found")
        return stack

    def _get_member(self, stack: Stack, service_name: str) -> StackService:
        member = stack.services.get(service_name)
        if member is None:
            raise NotFoundError(f"Service {service_name} not found in stack {stack.name}")
        return member

    # Building blocks

    async def _materialize_networks(self, networks: Optional[Dict[str, StackNetwork]]) -> None:
        """
        Creates (or for external networks, looks up) every stack network.
        Failures are logged and do not stop the deployment.
        """
        for key, network in (networks or {}).items():
            name = network.name or key
            try:
                if network.external:
                    await self.registrar.require_network(name)
                else:
                    await self.registrar.ensure_network(name, self._network_options(network))
            except OrchestrationError as e:
                logger.error(f"Network {name} could not be prepared: {e}")

    @staticmethod
    def _network_options(network: StackNetwork) -> NetworkOptions:
        return NetworkOptions(driver=network.driver, attachable=network.attachable, labels=dict(network.labels))

    def _member_networks(self, stack: Stack, member: StackService) -> Tuple[List[str], Dict[str, NetworkOptions]]:
        # members refer to stack networks by key; the engine knows them by name
        declared = stack.networks or {}
        names: List[str] = []
        options: Dict[str, NetworkOptions] = {}
        for ref in member.networks:
            network = declared.get(ref)
            if network is None:
                names.append(ref)
                continue
            name = network.name or ref
            names.append(name)
            if not network.external:
                options[name] = self._network_options(network)
        return names, options

    def _labels(self, stack: Stack, member: StackService) -> Dict[str, str]:
        return {**member.labels, STACK_NAMESPACE_LABEL: stack.name}

    def _member_mounts(self, member: StackService, volumes: Dict[str, str]) -> List[MountConfig]:
        mounts = []
        for ref in member.volumes:
            try:
                mount = MountConfig.parse(ref)
            except ValueError as e:
                raise ValidationError(f"Service {member.name}: invalid volume {ref!r}: {e}") from e
            if mount.type == "volume" and mount.source:
                if mount.source not in volumes:
                    raise ValidationError(f"Service {member.name} mounts undeclared volume {mount.source}")
                mount = mount.model_copy(update={"source": volumes[mount.source]})
            mounts.append(mount)
        return mounts

    def _member_spec(self, stack: Stack, key: str, member: StackService, volumes: Dict[str, str]) -> ServiceSpec:
        networks, options = self._member_networks(stack, member)
        deploy = member.deploy
        return ServiceSpec(
            name=stack.qualified_name(key),
            image=member.image,
            replicas=member.replicas,
            ports=member.ports,
            # stack entries first, service entries after: later entries override
            environment=stack.env_list() + list(member.environment),
            labels=self._labels(stack, member),
            networks=networks,
            network_options=options,
            update_config=deploy.update_config if deploy else None,
            placement_constraints=list(deploy.placement_constraints) if deploy else [],
            mounts=self._member_mounts(member, volumes),
        )

    def _member_patch(self, stack: Stack, member: StackService, volumes: Dict[str, str]) -> ServicePatch:
        networks, options = self._member_networks(stack, member)
        deploy = member.deploy
        return ServicePatch(
            image=member.image,
            replicas=member.replicas,
            ports=member.ports,
            environment=stack.env_list() + list(member.environment),
            labels=self._labels(stack, member),
            networks=networks,
            network_options=options,
            update_config=deploy.update_config if deploy else None,
            placement_constraints=list(deploy.placement_constraints) if deploy else [],
            mounts=self._member_mounts(member, volumes),
        )

    async def _rollback(self, stack_name: str, deployed: List[Tuple[str, str]]) -> None:
        for key, service_id in reversed(deployed):
            try:
                await self.services.remove(service_id)
                logger.info(f"Rolled back {stack_name}_{key}")
            except OrchestrationError as e:
                logger.error(f"Rollback of {stack_name}_{key} failed: {e}")

    # Lifecycle

    async def create_stack(self, config: Union[StackConfig, Dict[str, Any]]) -> Stack:
        """
        Deploys a new stack.

        Members are deployed in declaration order. If one fails, the members
        deployed before it are removed again and the original error is raised;
        the stack is not registered.

        :param config: Stack name, member services and optional networks, volumes and env.
        :return: The registered stack, in ``running`` state.
        :raises ValidationError: If the config is incomplete.
        :raises ConflictError: If a stack with the same name exists or is being created.
        """
        config = validate_input(StackConfig, config)
        name = config.name
        if self.repository.contains(name) or name in self._pending:
            raise ConflictError(f"Stack {name} already exists")
        self._pending.add(name)
        try:
            stack = Stack(
                name=name,
                version=config.version,
                services=ResourcePolicyEnforcer.apply_to_members(config.services),
                networks=config.networks,
                volumes=config.volumes,
                env=config.env,
            )
            logger.info(f"Creating stack {name} with {len(stack.services)} services")

            volumes = self.volumes.prepare_volumes(name, stack.volumes)
            # every member is validated before anything reaches the engine
            specs = [
                (key, self._member_spec(stack, key, member, volumes))
                for key, member in stack.services.items()
            ]

            if stack.networks:
                await self._materialize_networks(stack.networks)

            deployed: List[Tuple[str, str]] = []
            for key, spec in specs:
                try:
                    created = await self.services.create(spec)
                except OrchestrationError as e:
                    logger.error(f"Deploying {spec.name} failed, rolling back stack {name}: {e}")
                    await self._rollback(name, deployed)
                    stack.update_status(StackStatus.ERROR)
                    raise
                deployed.append((key, created.get("ID") or spec.name))

            stack.update_status(StackStatus.RUNNING)
            self.repository.add(stack)
            logger.info(f"Stack {name} is running")
            return stack
        finally:
            self._pending.discard(name)

    async def update_stack(self, name: str, patch: Union[StackPatch, Dict[str, Any]]) -> Stack:
        """
        Applies a partial update to a deployed stack.

        Member updates are not rolled back when a later one fails; the stack
        is marked ``error`` and the failure is raised.

        :raises NotFoundError: If the stack does not exist.
        """
        patch = validate_input(StackPatch, patch)
        stack = self.get_stack(name)
        stack.update_status(StackStatus.UPDATING)
        logger.info(f"Updating stack {name}")

        try:
            if patch.env is not None:
                stack.env = patch.env
            if patch.networks is not None:
                stack.networks = {**(stack.networks or {}), **patch.networks}
                await self._materialize_networks(stack.networks)
            if patch.volumes is not None:
                stack.volumes = {**(stack.volumes or {}), **patch.volumes}
            volumes = self.volumes.prepare_volumes(name, stack.volumes)

            services = dict(stack.services)
            for key, member in ResourcePolicyEnforcer.apply_to_members(patch.services).items():
                if key in stack.services:
                    await self.services.update(stack.qualified_name(key), self._member_patch(stack, member, volumes))
                else:
                    await self.services.create(self._member_spec(stack, key, member, volumes))
                services[key] = member
        except OrchestrationError as e:
            logger.error(f"Updating stack {name} failed: {e}")
            stack.update_status(StackStatus.ERROR)
            self.repository.put(stack)
            raise

        stack.update_services(services)
        stack.update_status(StackStatus.RUNNING)
        self.repository.put(stack)
        return stack

    async def delete_stack(self, name: str) -> Dict[str, Any]:
        """
        Removes every member service, then the stack record.

        The record is removed even when some members could not be.

        :return: ``{"removed": [...], "failed": {service: message}}``
        :raises NotFoundError: If the stack does not exist.
        """
        stack = self.get_stack(name)
        removed: List[str] = []
        failed: Dict[str, str] = {}
        try:
            for key in stack.services:
                qualified = stack.qualified_name(key)
                try:
                    await self.services.remove(qualified)
                    removed.append(key)
                except OrchestrationError as e:
                    logger.error(f"Removing {qualified} failed: {e}")
                    failed[key] = e.message
        finally:
            self.repository.delete(name)
        logger.info(f"Deleted stack {name}")
        return {"removed": removed, "failed": failed}

    async def scale_stack_service(self, stack_name: str, service_name: str, replicas: int) -> Dict[str, Any]:
        """
        Scales one member and records the new count on the stack.
        """
        stack = self.get_stack(stack_name)
        member = self._get_member(stack, service_name)
        result = await self.services.scale(stack.qualified_name(service_name), replicas)
        stack.update_services({**stack.services, service_name: member.with_replicas(replicas)})
        self.repository.put(stack)
        return result

    async def get_stack_services(self, stack_name: str) -> Dict[str, Dict[str, Any]]:
        """
        Member definitions together with their live engine state.
        """
        stack = self.get_stack(stack_name)
        services = {}
        for key, member in stack.services.items():
            qualified = stack.qualified_name(key)
            entry = {"name": key, "qualified_name": qualified, "definition": member.model_dump()}
            try:
                entry["service"] = await self.services.get_service(qualified)
                entry["status"] = "success"
            except OrchestrationError as e:
                entry["status"] = "error"
                entry["error"] = e.message
            services[key] = entry
        return services

    # Replicas and logs

    async def get_stack_service_replicas(self, stack_name: str, service_name: str) -> ReplicaSet:
        stack = self.get_stack(stack_name)
        self._get_member(stack, service_name)
        return await self.services.get_replicas(stack.qualified_name(service_name))

    async def get_stack_service_bulk_logs(self,
                                          stack_name: str,
                                          service_name: str,
                                          options: Union[BulkLogOptions, Dict[str, Any], None] = None) -> BulkLogResult:
        stack = self.get_stack(stack_name)
        self._get_member(stack, service_name)
        return await self.services.get_bulk_logs(stack.qualified_name(service_name), options)

    async def get_stack_logs(self,
                             stack_name: str,
                             service_name: Optional[str] = None,
                             options: Union[LogOptions, Dict[str, Any], None] = None) -> StackLogsResult:
        """
        Logs of one member, or of every member of the stack.

        A named member behaves like a single-service log call and raises on
        failure. Without one, members are fetched three at a time with a
        default tail of 50 lines each, and each failure stays in its member's
        entry.
        """
        stack = self.get_stack(stack_name)
        options = validate_input(LogOptions, options)

        if service_name is not None:
            member = self._get_member(stack, service_name)
            logs = await self.services.get_logs(stack.qualified_name(service_name), options)
            return StackLogsResult(stack_name=stack.name, services={
                service_name: ServiceLogEntry(
                    status="success",
                    service_name=stack.qualified_name(service_name),
                    configured_replicas=member.replicas,
                    logs=logs,
                )
            })

        if options.tail is None:
            options = options.model_copy(update={"tail": STACK_LOG_DEFAULT_TAIL})

        async def fetch(key: str) -> Tuple[str, ServiceLogEntry]:
            member = stack.services[key]
            qualified = stack.qualified_name(key)
            try:
                logs = await self.services.get_logs(qualified, options)
            except OrchestrationError as e:
                logger.error(f"Logs for {qualified} failed: {e}")
                return key, ServiceLogEntry(
                    status="error",
                    service_name=qualified,
                    configured_replicas=member.replicas,
                    error=e.message,
                )
            return key, ServiceLogEntry(
                status="success",
                service_name=qualified,
                configured_replicas=member.replicas,
                logs=logs,
            )

        entries = await run_in_batches(list(stack.services), STACK_LOG_BATCH_SIZE, fetch)
        return StackLogsResult(stack_name=stack.name, services=dict(entries))
