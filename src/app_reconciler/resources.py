"""
Builders for the objects derived from an Application.

Both builders are pure: they return fully-formed objects and never touch the
cluster. Writing them is the reconciler's job.
"""

from .models import (
    Application,
    Container,
    ContainerPort,
    Endpoint,
    EndpointSpec,
    LabelSelector,
    ObjectMeta,
    OwnerReference,
    PodSpec,
    PodTemplate,
    ServicePort,
    TemplateMeta,
    Workload,
    WorkloadSpec,
)
from .settings import AppSettings, get_settings


def app_labels(app: Application) -> dict[str, str]:
    return {"app": app.metadata.name}


def owner_reference(app: Application) -> OwnerReference:
    return OwnerReference(
        api_version=app.api_version,
        kind=app.kind,
        name=app.metadata.name,
        uid=app.metadata.uid or "",
        controller=True,
        block_owner_deletion=True,
    )


def _derived_meta(app: Application) -> ObjectMeta:
    """Same identity as the owner, linked back to it for cascading deletion."""
    return ObjectMeta(
        name=app.metadata.name,
        namespace=app.metadata.namespace,
        owner_references=[owner_reference(app)],
    )


def build_workload(app: Application, settings: AppSettings | None = None) -> Workload:
    settings = settings or get_settings()
    labels = app_labels(app)

    container = Container(
        name=app.metadata.name,
        image=app.spec.image,
        ports=[ContainerPort(container_port=settings.CONTAINER_PORT)],
        image_pull_policy=settings.IMAGE_PULL_POLICY,
    )

    return Workload(
        metadata=_derived_meta(app),
        spec=WorkloadSpec(
            replicas=app.spec.replicas,
            selector=LabelSelector(match_labels=dict(labels)),
            template=PodTemplate(
                metadata=TemplateMeta(labels=dict(labels)),
                spec=PodSpec(containers=[container]),
            ),
        ),
    )


def build_endpoint(app: Application, settings: AppSettings | None = None) -> Endpoint:
    settings = settings or get_settings()

    port = ServicePort(
        name=settings.PORT_NAME,
        port=settings.SERVICE_PORT,
        target_port=settings.CONTAINER_PORT,
        node_port=settings.NODE_PORT,
    )

    return Endpoint(
        metadata=_derived_meta(app),
        spec=EndpointSpec(type="NodePort", ports=[port], selector=app_labels(app)),
    )
