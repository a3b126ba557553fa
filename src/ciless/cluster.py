import asyncio
import functools
from typing import Any

import urllib3
from kubernetes import client, config as kube_config
from kubernetes.client.rest import ApiException
from sanic.log import logger

from ciless.config import Config
from ciless.exceptions import (
    ClusterError,
    ResourceAlreadyExistsError,
    ResourceConflictError,
    ResourceNotFoundError,
    ResourceRejectedError,
    TransportError,
)
from ciless.template import API_GROUP, API_VERSION, PLURAL


def load_api_client(config: Config) -> client.ApiClient:
    """Build a Kubernetes API client, preferring in-cluster credentials."""
    if config.KUBECONFIG is None and config.KUBE_MASTER_URL is None:
        try:
            kube_config.load_incluster_config()
            logger.debug("Using in-cluster Kubernetes configuration")
            return client.ApiClient()
        except kube_config.ConfigException:
            logger.debug("Not running in a cluster, falling back to kubeconfig")

    configuration = client.Configuration()
    kube_config.load_kube_config(
        config_file=config.KUBECONFIG, client_configuration=configuration
    )
    if config.KUBE_MASTER_URL is not None:
        configuration.host = config.KUBE_MASTER_URL
    logger.debug("Using Kubernetes API at %s", configuration.host)
    return client.ApiClient(configuration)


class BuildTemplateClient:
    """Get, create and replace BuildTemplate objects in one namespace.

    Every call runs the blocking Kubernetes client in a worker thread with a
    per-request deadline, and translates API failures into bridge errors.
    """

    def __init__(
        self,
        api: client.CustomObjectsApi,
        namespace: str,
        timeout: float,
    ):
        self.api = api
        self.namespace = namespace
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: Config) -> "BuildTemplateClient":
        api = client.CustomObjectsApi(load_api_client(config))
        return cls(api, namespace=config.KUBE_NAMESPACE, timeout=config.REQUEST_TIMEOUT)

    async def _call(self, method, *args, **kwargs) -> dict[str, Any]:
        call = functools.partial(
            method,
            API_GROUP,
            API_VERSION,
            self.namespace,
            PLURAL,
            *args,
            _request_timeout=self.timeout,
            **kwargs,
        )
        try:
            return await asyncio.to_thread(call)
        except urllib3.exceptions.HTTPError as e:
            raise TransportError(f"Kubernetes API unreachable: {e}") from e

    def _translate(self, e: ApiException, name: str, conflict: type[ClusterError]):
        if e.status == 404:
            return ResourceNotFoundError(name, f"{PLURAL}/{name} not found")
        if e.status == 409:
            return conflict(name, f"{PLURAL}/{name}: {e.reason}")
        if e.status in (401, 403) or e.status is None or e.status >= 500:
            return TransportError(f"Kubernetes API error {e.status}: {e.reason}")
        return ResourceRejectedError(name, f"{PLURAL}/{name} rejected: {e.status} {e.reason}")

    async def get(self, name: str) -> dict[str, Any]:
        try:
            return await self._call(self.api.get_namespaced_custom_object, name)
        except ApiException as e:
            raise self._translate(e, name, ResourceConflictError) from e

    async def create(self, body: dict[str, Any]) -> dict[str, Any]:
        name = body["metadata"]["name"]
        try:
            return await self._call(self.api.create_namespaced_custom_object, body)
        except ApiException as e:
            raise self._translate(e, name, ResourceAlreadyExistsError) from e

    async def update(self, body: dict[str, Any]) -> dict[str, Any]:
        name = body["metadata"]["name"]
        try:
            return await self._call(
                self.api.replace_namespaced_custom_object, name, body
            )
        except ApiException as e:
            raise self._translate(e, name, ResourceConflictError) from e

    async def list_templates(self, limit: int = 1) -> dict[str, Any]:
        try:
            return await self._call(
                self.api.list_namespaced_custom_object, limit=limit
            )
        except ApiException as e:
            raise self._translate(e, PLURAL, ResourceRejectedError) from e
