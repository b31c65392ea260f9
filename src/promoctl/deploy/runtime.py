"""Container orchestrator adapters.

The rollout engine only issues abstract commands (shift traffic, prepare,
swap) and trusts their effect; health is verified separately by the prober.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from promoctl.config import K8sConfig, PromoCtlConfig
from promoctl.core.exceptions import AuthenticationError, OrchestratorError
from promoctl.core.logging import get_logger
from promoctl.deploy.models import Deployment, Revision

logger = get_logger(__name__)

COLOR_LABEL = "promoctl/color"
REPLICAS_ANNOTATION = "promoctl/replicas"
COLORS = ("blue", "green")


def _other_color(color: str) -> str:
    return "green" if color == "blue" else "blue"


class Orchestrator(ABC):
    """Commands the engine issues against the runtime."""

    @abstractmethod
    def shift_traffic(self, deployment: Deployment, revision: Revision, percentage: int) -> None:
        """Route ``percentage`` of traffic to ``revision``; 0 removes it, 100 makes it the only one."""
        pass

    @abstractmethod
    def prepare(self, deployment: Deployment, revision: Revision) -> None:
        """Provision ``revision`` in full alongside the live one without routing traffic to it."""
        pass

    @abstractmethod
    def swap(self, deployment: Deployment, revision: Revision) -> None:
        """Atomically switch all traffic to the prepared ``revision``."""
        pass

    @abstractmethod
    def is_ready(self, deployment: Deployment, revision: Revision) -> bool:
        """Whether the workload running ``revision`` has all replicas ready.

        A workload that receives traffic is preferred over one that only
        happens to run the same image.
        """
        pass


@dataclass
class OrchestratorCall:
    """A command recorded by ``NullOrchestrator``."""

    command: str
    key: str
    revision: str
    percentage: int | None = None


@dataclass
class NullOrchestrator(Orchestrator):
    """Orchestrator that only records commands. Used for dry runs and local state-only setups."""

    calls: list[OrchestratorCall] = field(default_factory=list)
    live: dict[str, str] = field(default_factory=dict)

    def shift_traffic(self, deployment: Deployment, revision: Revision, percentage: int) -> None:
        self.calls.append(OrchestratorCall("shift_traffic", deployment.key, revision.digest, percentage))
        if percentage == 100:
            self.live[deployment.key] = revision.image
        logger.info("Shift traffic", key=deployment.key, revision=revision.short, percentage=percentage)

    def prepare(self, deployment: Deployment, revision: Revision) -> None:
        self.calls.append(OrchestratorCall("prepare", deployment.key, revision.digest))
        logger.info("Prepare", key=deployment.key, revision=revision.short)

    def swap(self, deployment: Deployment, revision: Revision) -> None:
        self.calls.append(OrchestratorCall("swap", deployment.key, revision.digest, 100))
        self.live[deployment.key] = revision.image
        logger.info("Swap", key=deployment.key, revision=revision.short)

    def is_ready(self, deployment: Deployment, revision: Revision) -> bool:
        return True


class KubernetesOrchestrator(Orchestrator):
    """Kubernetes orchestrator using the official client.

    Canary traffic is approximated by replica counts between ``<name>`` and
    ``<name>-canary``. Blue/green runs ``<name>-blue`` and ``<name>-green``
    side by side and switches the Service selector. While the selector
    names a color, only that color serves; weighted shifts first hand
    traffic back to ``<name>``.
    """

    def __init__(self, config: PromoCtlConfig):
        self._config = config
        self._k8s_config: K8sConfig = config.k8s
        self._apps_v1: Any = None
        self._core_v1: Any = None
        self._api_client: Any = None
        self._loaded = False

    def _load_config(self) -> None:
        """Load kubernetes configuration."""
        if self._loaded:
            return

        from kubernetes import config

        kubeconfig = self._k8s_config.get_kubeconfig()
        context = self._k8s_config.get_context()

        try:
            if kubeconfig:
                config.load_kube_config(config_file=kubeconfig, context=context)
            else:
                try:
                    config.load_incluster_config()
                except config.ConfigException:
                    config.load_kube_config(context=context)
        except Exception as e:
            raise AuthenticationError(f"Failed to load k8s config: {e}")

        self._loaded = True
        logger.debug("Loaded k8s config", context=context)

    @property
    def apps_v1(self) -> Any:
        """Get AppsV1Api client."""
        if self._apps_v1 is None:
            self._load_config()
            from kubernetes import client

            self._apps_v1 = client.AppsV1Api()
        return self._apps_v1

    @property
    def core_v1(self) -> Any:
        """Get CoreV1Api client."""
        if self._core_v1 is None:
            self._load_config()
            from kubernetes import client

            self._core_v1 = client.CoreV1Api()
        return self._core_v1

    @property
    def api_client(self) -> Any:
        if self._api_client is None:
            self._load_config()
            from kubernetes import client

            self._api_client = client.ApiClient()
        return self._api_client

    def target(self, deployment: Deployment) -> tuple[str, str]:
        """Kubernetes deployment name and namespace for a deployment key."""
        env_config = self._config.get_service(deployment.service).environment(deployment.environment)
        name = env_config.deployment or deployment.service
        namespace = env_config.namespace or self._k8s_config.namespace
        return name, namespace

    def _call(self, action: str, func: Any, *args: Any, **kwargs: Any) -> Any:
        from kubernetes.client.rest import ApiException

        try:
            return func(*args, **kwargs)
        except ApiException as e:
            raise OrchestratorError(f"Failed to {action}: {e.reason}", status_code=e.status)

    def _read(self, name: str, namespace: str) -> dict[str, Any] | None:
        from kubernetes.client.rest import ApiException

        try:
            obj = self.apps_v1.read_namespaced_deployment(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise OrchestratorError(f"Failed to read deployment {name}: {e.reason}", status_code=e.status)
        return self.api_client.sanitize_for_serialization(obj)

    def _delete(self, name: str, namespace: str) -> None:
        from kubernetes.client.rest import ApiException

        try:
            self.apps_v1.delete_namespaced_deployment(name, namespace)
        except ApiException as e:
            if e.status != 404:
                raise OrchestratorError(f"Failed to delete deployment {name}: {e.reason}", status_code=e.status)

    def _scale(self, name: str, namespace: str, replicas: int) -> None:
        self._call(
            f"scale {name}",
            self.apps_v1.patch_namespaced_deployment_scale,
            name,
            namespace,
            {"spec": {"replicas": replicas}},
        )

    def _set_image(self, name: str, namespace: str, image: str, spec: dict[str, Any]) -> None:
        container = spec["spec"]["template"]["spec"]["containers"][0]["name"]
        body = {"spec": {"template": {"spec": {"containers": [{"name": container, "image": image}]}}}}
        self._call(f"update image of {name}", self.apps_v1.patch_namespaced_deployment, name, namespace, body)

    def _require(self, name: str, namespace: str) -> dict[str, Any]:
        spec = self._read(name, namespace)
        if spec is None:
            raise OrchestratorError(f"Deployment {namespace}/{name} not found", status_code=404)
        return spec

    def _total_replicas(self, spec: dict[str, Any]) -> int:
        annotations = spec.get("metadata", {}).get("annotations") or {}
        if REPLICAS_ANNOTATION in annotations:
            return int(annotations[REPLICAS_ANNOTATION])
        return int(spec.get("spec", {}).get("replicas") or 1)

    def _clone(self, stable: dict[str, Any], name: str, image: str, replicas: int, labels: dict[str, str]) -> dict[str, Any]:
        """Derive a sibling deployment from the stable one."""
        metadata = stable["metadata"]
        spec = stable["spec"]
        selector = dict(spec["selector"].get("matchLabels") or {})
        selector.update(labels)
        template = spec["template"]
        template_labels = dict(template["metadata"].get("labels") or {})
        template_labels.update(labels)

        containers = [dict(c) for c in template["spec"]["containers"]]
        containers[0]["image"] = image

        return {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {
                "name": name,
                "namespace": metadata["namespace"],
                "labels": {**(metadata.get("labels") or {}), **labels},
            },
            "spec": {
                "replicas": replicas,
                "selector": {"matchLabels": selector},
                "template": {
                    "metadata": {"labels": template_labels},
                    "spec": {**template["spec"], "containers": containers},
                },
            },
        }

    def _upsert(self, stable: dict[str, Any], name: str, namespace: str, image: str, replicas: int, labels: dict[str, str]) -> None:
        existing = self._read(name, namespace)
        if existing is None:
            body = self._clone(stable, name, image, replicas, labels)
            self._call(f"create {name}", self.apps_v1.create_namespaced_deployment, namespace, body)
        else:
            self._set_image(name, namespace, image, existing)
            self._scale(name, namespace, replicas)

    def _image(self, spec: dict[str, Any]) -> str:
        return spec["spec"]["template"]["spec"]["containers"][0]["image"]

    def _scale_if_present(self, name: str, namespace: str, replicas: int) -> None:
        if self._read(name, namespace) is not None:
            self._scale(name, namespace, replicas)

    def _selector(self, name: str, namespace: str) -> dict[str, str]:
        from kubernetes.client.rest import ApiException

        try:
            service = self.core_v1.read_namespaced_service(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return {}
            raise OrchestratorError(f"Failed to read service {name}: {e.reason}", status_code=e.status)
        return dict(service.spec.selector or {})

    def _active_color(self, name: str, namespace: str) -> str | None:
        return self._selector(name, namespace).get(COLOR_LABEL)

    def _switch(self, name: str, namespace: str, color: str) -> None:
        body = {"spec": {"selector": {COLOR_LABEL: color}}}
        self._call(f"switch service {name}", self.core_v1.patch_namespaced_service, name, namespace, body)

    def _route_to_stable(self, name: str, namespace: str) -> None:
        """Drop the color from the Service selector and stop both colors."""
        body = {"spec": {"selector": {COLOR_LABEL: None}}}
        self._call(f"switch service {name}", self.core_v1.patch_namespaced_service, name, namespace, body)
        for color in COLORS:
            self._scale_if_present(f"{name}-{color}", namespace, 0)

    def _release_color(
        self, name: str, namespace: str, stable: dict[str, Any], draining: str | None
    ) -> dict[str, Any]:
        """Hand traffic from the live color back to ``<name>``.

        ``<name>`` takes over the live color's image unless that image is the
        one being drained. Does nothing while the Service selects no color.
        """
        active = self._active_color(name, namespace)
        if active is None:
            return stable

        self._scale_if_present(f"{name}-{_other_color(active)}", namespace, 0)
        live = self._read(f"{name}-{active}", namespace)
        if live is not None and self._image(live) != draining:
            self._set_image(name, namespace, self._image(live), stable)
        self._scale(name, namespace, self._total_replicas(stable))
        self._route_to_stable(name, namespace)
        logger.info("Moved traffic off color", deployment=f"{namespace}/{name}", color=active)
        return self._require(name, namespace)

    def shift_traffic(self, deployment: Deployment, revision: Revision, percentage: int) -> None:
        name, namespace = self.target(deployment)
        canary_name = f"{name}-canary"
        stable = self._require(name, namespace)
        stable = self._release_color(name, namespace, stable, revision.image if percentage <= 0 else None)
        total = self._total_replicas(stable)

        if REPLICAS_ANNOTATION not in (stable["metadata"].get("annotations") or {}):
            body = {"metadata": {"annotations": {REPLICAS_ANNOTATION: str(total)}}}
            self._call(f"annotate {name}", self.apps_v1.patch_namespaced_deployment, name, namespace, body)

        if percentage >= 100:
            self._set_image(name, namespace, revision.image, stable)
            self._scale(name, namespace, total)
            self._delete(canary_name, namespace)
        elif percentage <= 0:
            self._scale(name, namespace, total)
            self._delete(canary_name, namespace)
        else:
            canary_replicas = max(1, int(total * percentage / 100))
            stable_replicas = max(1, total - canary_replicas)
            self._upsert(stable, canary_name, namespace, revision.image, canary_replicas, {"canary": "true"})
            self._scale(name, namespace, stable_replicas)

        logger.info("Shifted traffic", deployment=f"{namespace}/{name}", revision=revision.short, percentage=percentage)

    def prepare(self, deployment: Deployment, revision: Revision) -> None:
        name, namespace = self.target(deployment)
        stable = self._require(name, namespace)
        total = self._total_replicas(stable)
        active = self._active_color(name, namespace)

        if active is None:
            # the plain selector matches every color; blue takes over from <name> first
            active = COLORS[0]
            self._upsert(stable, f"{name}-{active}", namespace, self._image(stable), total, {COLOR_LABEL: active})
            self._switch(name, namespace, active)

        idle = _other_color(active)
        self._upsert(stable, f"{name}-{idle}", namespace, revision.image, total, {COLOR_LABEL: idle})
        logger.info("Prepared idle color", deployment=f"{namespace}/{name}", color=idle, revision=revision.short)

    def _color_running(self, name: str, namespace: str, revision: Revision) -> str | None:
        for color in COLORS:
            spec = self._read(f"{name}-{color}", namespace)
            if spec and spec["spec"].get("replicas") and self._image(spec) == revision.image:
                return color
        return None

    def swap(self, deployment: Deployment, revision: Revision) -> None:
        """Switch the Service to the color running ``revision``.

        When no color runs it but ``<name>`` does, traffic goes back to
        ``<name>``.
        """
        name, namespace = self.target(deployment)
        color = self._color_running(name, namespace, revision)
        if color is None:
            stable = self._read(name, namespace)
            if stable is None or self._image(stable) != revision.image:
                raise OrchestratorError(f"No prepared color runs {revision.short} for {namespace}/{name}")
            self._scale(name, namespace, self._total_replicas(stable))
            self._route_to_stable(name, namespace)
            logger.info("Switched traffic back to stable", deployment=f"{namespace}/{name}", revision=revision.short)
            return

        self._switch(name, namespace, color)
        logger.info("Switched traffic", deployment=f"{namespace}/{name}", color=color, revision=revision.short)

    def _serving(self, name: str, namespace: str) -> list[str]:
        active = self._active_color(name, namespace)
        if active is not None:
            return [f"{name}-{active}"]
        return [name, f"{name}-canary"]

    def is_ready(self, deployment: Deployment, revision: Revision) -> bool:
        name, namespace = self.target(deployment)
        candidates = self._serving(name, namespace)
        candidates += [f"{name}-{color}" for color in COLORS if f"{name}-{color}" not in candidates]

        for candidate in candidates:
            spec = self._read(candidate, namespace)
            if spec is None or self._image(spec) != revision.image:
                continue
            desired = spec["spec"].get("replicas") or 0
            if desired == 0:
                continue
            ready = (spec.get("status") or {}).get("readyReplicas") or 0
            return ready >= desired
        return False



def create_orchestrator(config: PromoCtlConfig, dry_run: bool = False) -> Orchestrator:
    """Build the orchestrator for this configuration."""
    if dry_run or config.orchestrator == "none":
        return NullOrchestrator()
    return KubernetesOrchestrator(config)
