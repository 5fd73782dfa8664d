from typing import Any, ClassVar, NamedTuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .settings import AppSettings, get_settings


class ObjectKey(NamedTuple):
    namespace: str
    name: str

    @classmethod
    def parse(cls, value: str) -> "ObjectKey":
        """Accepts 'namespace/name', or a bare 'name' in the default namespace."""
        namespace, _, name = value.rpartition("/")
        if not name:
            raise ValueError(f"Invalid object key: {value!r}")
        return cls(namespace or "default", name)

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class KubeModel(BaseModel):
    """Maps snake_case fields onto the camelCase keys of Kubernetes manifests.

    Undeclared keys (finalizers, status, server-defaulted spec fields) are kept
    and dumped back out, as updates replace the whole object.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class OwnerReference(KubeModel):
    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = True
    block_owner_deletion: bool = True


class ObjectMeta(KubeModel):
    name: str
    namespace: str = "default"
    uid: str | None = None
    resource_version: str | None = None
    labels: dict[str, str] | None = None
    annotations: dict[str, str] | None = None
    owner_references: list[OwnerReference] | None = None

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    def controller_ref(self) -> OwnerReference | None:
        for ref in self.owner_references or []:
            if ref.controller:
                return ref
        return None


class ClusterObject(KubeModel):
    resource: ClassVar[str]

    api_version: str
    kind: str
    metadata: ObjectMeta

    @property
    def key(self) -> ObjectKey:
        return self.metadata.key

    def to_manifest(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# --- Desired state ---


class ApplicationSpec(KubeModel):
    image: str = Field(..., description="Container image reference to run")
    replicas: int = Field(..., ge=0, description="Desired number of pods")


class Application(ClusterObject):
    resource: ClassVar[str] = "Application"

    spec: ApplicationSpec

    @classmethod
    def new(
        cls,
        name: str,
        spec: ApplicationSpec,
        namespace: str = "default",
        settings: AppSettings | None = None,
        **meta: Any,
    ) -> "Application":
        """Builds an Application carrying the group/version/kind of the given settings."""
        settings = settings or get_settings()
        return cls(
            api_version=settings.api_version,
            kind=settings.KIND,
            metadata=ObjectMeta(name=name, namespace=namespace, **meta),
            spec=spec,
        )


# --- Workload (apps/v1 Deployment) ---


class ContainerPort(KubeModel):
    container_port: int
    name: str | None = None
    protocol: str | None = None


class Container(KubeModel):
    name: str
    image: str
    ports: list[ContainerPort] = Field(default_factory=list)
    image_pull_policy: str | None = None


class PodSpec(KubeModel):
    containers: list[Container]


class TemplateMeta(KubeModel):
    labels: dict[str, str] = Field(default_factory=dict)


class PodTemplate(KubeModel):
    metadata: TemplateMeta
    spec: PodSpec


class LabelSelector(KubeModel):
    match_labels: dict[str, str]


class WorkloadSpec(KubeModel):
    replicas: int
    selector: LabelSelector
    template: PodTemplate
    strategy: dict[str, Any] | None = None  # Platform default, never set by the builder


class Workload(ClusterObject):
    resource: ClassVar[str] = "Deployment"

    api_version: str = "apps/v1"
    kind: str = "Deployment"
    spec: WorkloadSpec


# --- Endpoint (v1 Service) ---


class ServicePort(KubeModel):
    port: int
    target_port: int | str
    name: str | None = None
    node_port: int | None = None
    protocol: str | None = None


class EndpointSpec(KubeModel):
    type: str = "NodePort"
    ports: list[ServicePort]
    selector: dict[str, str]
    cluster_ip: str | None = Field(None, alias="clusterIP")
    cluster_ips: list[str] | None = Field(None, alias="clusterIPs")


class Endpoint(ClusterObject):
    resource: ClassVar[str] = "Service"

    api_version: str = "v1"
    kind: str = "Service"
    spec: EndpointSpec
