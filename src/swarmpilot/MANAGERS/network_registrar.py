"""
Network management for services, materializing named overlay networks on demand.
"""
from typing import Any, Dict, List, Optional

from ..CLIENT.cluster_client import ClusterClient
from ..errors import NotFoundError
from ..MODELS.service_spec import NetworkAttachment, NetworkOptions
from ..UTILS.logging import get_logger

logger = get_logger(__name__, prefix="Network")


class NetworkRegistrar:
    """
    Resolves network names to engine networks, creating them when absent.
    """
    def __init__(self, client: ClusterClient):
        """
        Initializes the registrar.

        :param client: Cluster client used for all network calls.
        """
        self.client = client

    async def find_network(self, name_or_id: str) -> Optional[Dict[str, Any]]:
        """
        Looks a network up by exact name, then by id or id prefix.

        The engine's name filter matches substrings, so candidates are
        re-checked against the exact name.

        :return: The network summary, or None if there is no such network.
        """
        by_name = await self.client.list_networks(filters={"name": [name_or_id]})
        for network in by_name:
            if network.get("Name") == name_or_id:
                return network
        by_id = await self.client.list_networks(filters={"id": [name_or_id]})
        for network in by_id:
            if network.get("Id", "").startswith(name_or_id):
                return network
        return None

    async def ensure_network(self, name: str, options: Optional[NetworkOptions] = None) -> Dict[str, Any]:
        """
        Returns the named network, creating it first if it does not exist.

        :param name: Network name (or id of an existing network).
        :param options: Creation options; defaults to an attachable overlay network.
        :return: The engine network record.
        """
        existing = await self.find_network(name)
        if existing is not None:
            return existing

        options = options or NetworkOptions()
        spec = {
            "Name": name,
            "Driver": options.driver,
            "Attachable": options.attachable,
            "Internal": options.internal,
            "EnableIPv6": options.enable_ipv6,
            "Labels": dict(options.labels),
            "Options": dict(options.options),
        }
        created = await self.client.create_network(spec)
        logger.info(f"Created network {name} ({options.driver})")
        network_id = created.get("Id") or created.get("ID")
        if network_id:
            return await self.client.get_network(network_id)
        return {"Name": name, **created}

    async def require_network(self, name: str) -> Dict[str, Any]:
        """
        Returns an existing network without ever creating one.

        :raises NotFoundError: If the network does not exist.
        """
        network = await self.find_network(name)
        if network is None:
            raise NotFoundError(f"Network {name} not found")
        return network

    async def resolve_attachments(self,
                                  networks: List[str],
                                  options: Optional[Dict[str, NetworkOptions]] = None,
                                  passthrough: Optional[List[NetworkAttachment]] = None) -> List[Dict[str, Any]]:
        """
        Builds the engine attachment list for a service.

        Named networks are materialized through :meth:`ensure_network` and come
        first; pass-through attachments follow. Each target appears once.

        :param networks: Network names or ids to resolve (created if absent).
        :param options: Per-network creation options and aliases.
        :param passthrough: Attachments forwarded to the engine unchanged.
        :return: ``[{"Target": ..., "Aliases": [...]}, ...]``
        """
        options = options or {}
        attachments: List[Dict[str, Any]] = []
        seen = set()
        for name in networks:
            network = await self.ensure_network(name, options.get(name))
            target = network.get("Id") or network.get("ID") or name
            if target in seen:
                continue
            seen.add(target)
            attachment = {"Target": target}
            if name in options and options[name].aliases:
                attachment["Aliases"] = list(options[name].aliases)
            attachments.append(attachment)
        for legacy in passthrough or []:
            if legacy.target in seen:
                continue
            seen.add(legacy.target)
            attachments.append(legacy.to_engine())
        return attachments

    async def list_networks(self) -> List[Dict[str, Any]]:
        return await self.client.list_networks()

    async def get_network(self, network_id: str) -> Dict[str, Any]:
        return await self.client.get_network(network_id)

    async def remove_network(self, network_id: str) -> None:
        await self.client.remove_network(network_id)
        logger.info(f"Removed network {network_id}")
