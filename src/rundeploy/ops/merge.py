import posixpath
from collections.abc import Callable
from typing import Any, TypeVar

from google.api import launch_stage_pb2
from google.cloud import run_v2

from ..logger import logger
from ..schemas.deploy import DeployOptions, Ingress, VpcEgress
from .secrets import parse_secret_reference

M = TypeVar("M")

INGRESS_TRAFFIC = {
    Ingress.ALL: run_v2.IngressTraffic.INGRESS_TRAFFIC_ALL,
    Ingress.INTERNAL: run_v2.IngressTraffic.INGRESS_TRAFFIC_INTERNAL_ONLY,
    Ingress.INTERNAL_AND_CLOUD_LOAD_BALANCING: (
        run_v2.IngressTraffic.INGRESS_TRAFFIC_INTERNAL_LOAD_BALANCER
    ),
}

VPC_EGRESS = {
    VpcEgress.ALL_TRAFFIC: run_v2.VpcAccess.VpcEgress.ALL_TRAFFIC,
    VpcEgress.PRIVATE_RANGES_ONLY: run_v2.VpcAccess.VpcEgress.PRIVATE_RANGES_ONLY,
}

# Stages at which disabling the default URL is not accepted by the API
_PRE_BETA_STAGES = {
    launch_stage_pb2.LaunchStage.LAUNCH_STAGE_UNSPECIFIED,
    launch_stage_pb2.LaunchStage.GA,
}


def build_service(options: DeployOptions) -> run_v2.Service:
    """
    Builds a brand new service definition from the desired state.

    Only the replace-style options (`env_vars`, `secrets`) are read here;
    update/remove/clear options only make sense against an existing service.
    """
    env = [_literal_env(name, value) for name, value in options.env_vars.items()]
    mounts: list[run_v2.VolumeMount] = []
    volumes: list[run_v2.Volume] = []

    for key, ref in options.secrets.items():
        _put_secret(env, mounts, volumes, key, ref)

    container = run_v2.Container(image=options.image, env=env, volume_mounts=mounts)
    service = run_v2.Service(
        template=run_v2.RevisionTemplate(containers=[container], volumes=volumes)
    )

    _apply_policies(service, options)
    _apply_vpc_access(service.template, options)
    return service


def merge_service(existing: run_v2.Service, options: DeployOptions) -> run_v2.Service:
    """
    Returns a copy of `existing` with `options` merged into it.

    The fetched service is never mutated. Env vars and secrets are independent
    categories; within each, clear beats set, and set beats remove+update.
    """
    service = _clone(existing)
    template = service.template

    if not template.containers:
        template.containers = [run_v2.Container()]
    container = template.containers[0]

    if options.image:
        container.image = options.image

    env = [_clone(e) for e in container.env]
    mounts = [_clone(m) for m in container.volume_mounts]
    volumes = [_clone(v) for v in template.volumes]

    env = _merge_env_vars(env, options)
    env, mounts, volumes = _merge_secrets(env, mounts, volumes, options)

    container.env = env
    container.volume_mounts = mounts
    template.volumes = volumes

    _apply_policies(service, options)
    _apply_vpc_access(template, options)
    return service


def is_secret_env(env_var: run_v2.EnvVar) -> bool:
    return "value_source" in env_var


def is_secret_volume(volume: run_v2.Volume) -> bool:
    return "secret" in volume


def _merge_env_vars(env: list[run_v2.EnvVar], options: DeployOptions) -> list[run_v2.EnvVar]:
    # Secret-sourced variables belong to the secrets category and survive here
    secret_env = [e for e in env if is_secret_env(e)]

    if options.clear_env_vars:
        return secret_env

    if options.env_vars:
        # An explicitly set literal value wins over a secret of the same name
        literal = [_literal_env(k, v) for k, v in options.env_vars.items()]
        return literal + [e for e in secret_env if e.name not in options.env_vars]

    if options.remove_env_vars:
        removed = set(options.remove_env_vars)
        env = [e for e in env if is_secret_env(e) or e.name not in removed]

    for name, value in options.update_env_vars.items():
        _upsert(env, _literal_env(name, value), key=lambda e: e.name)

    return env


def _merge_secrets(
    env: list[run_v2.EnvVar],
    mounts: list[run_v2.VolumeMount],
    volumes: list[run_v2.Volume],
    options: DeployOptions,
) -> tuple[list[run_v2.EnvVar], list[run_v2.VolumeMount], list[run_v2.Volume]]:
    if options.clear_secrets:
        return _strip_secrets(env, mounts, volumes)

    if options.secrets:
        env, mounts, volumes = _strip_secrets(env, mounts, volumes)
        for key, ref in options.secrets.items():
            _put_secret(env, mounts, volumes, key, ref)
        return env, mounts, volumes

    if not options.remove_secrets and not options.update_secrets:
        return env, mounts, volumes

    if options.remove_secrets:
        env, mounts = _remove_secrets(env, mounts, volumes, set(options.remove_secrets))

    for key, ref in options.update_secrets.items():
        _put_secret(env, mounts, volumes, key, ref)

    # Secret volumes only ever exist alongside a mount
    mounted = {m.name for m in mounts}
    volumes = [v for v in volumes if not is_secret_volume(v) or v.name in mounted]
    return env, mounts, volumes


def _strip_secrets(
    env: list[run_v2.EnvVar],
    mounts: list[run_v2.VolumeMount],
    volumes: list[run_v2.Volume],
) -> tuple[list[run_v2.EnvVar], list[run_v2.VolumeMount], list[run_v2.Volume]]:
    secret_volumes = {v.name for v in volumes if is_secret_volume(v)}
    return (
        [e for e in env if not is_secret_env(e)],
        [m for m in mounts if m.name not in secret_volumes],
        [v for v in volumes if v.name not in secret_volumes],
    )


def _remove_secrets(
    env: list[run_v2.EnvVar],
    mounts: list[run_v2.VolumeMount],
    volumes: list[run_v2.Volume],
    removed: set[str],
) -> tuple[list[run_v2.EnvVar], list[run_v2.VolumeMount]]:
    """Drops entries matching either their key (name/mount path) or secret name."""
    # Volume name -> backing secret; the two differ for volumes made elsewhere
    secret_volumes = {v.name: v.secret.secret for v in volumes if is_secret_volume(v)}

    def keep_env(e: run_v2.EnvVar) -> bool:
        if not is_secret_env(e):
            return True
        return e.name not in removed and e.value_source.secret_key_ref.secret not in removed

    def keep_mount(m: run_v2.VolumeMount) -> bool:
        if m.name not in secret_volumes:
            return True
        return not removed & {m.mount_path, m.name, secret_volumes[m.name]}

    return [e for e in env if keep_env(e)], [m for m in mounts if keep_mount(m)]


def _put_secret(
    env: list[run_v2.EnvVar],
    mounts: list[run_v2.VolumeMount],
    volumes: list[run_v2.Volume],
    key: str,
    value: str,
) -> None:
    ref = parse_secret_reference(value)
    if not ref.is_valid:
        logger.warning(f"Skipping secret {key!r}: {value!r} does not name a secret")
        return

    if not key.startswith("/"):
        env_var = run_v2.EnvVar(
            name=key,
            value_source=run_v2.EnvVarSource(
                secret_key_ref=run_v2.SecretKeySelector(secret=ref.secret, version=ref.version)
            ),
        )
        _upsert(env, env_var, key=lambda e: e.name)
        return

    # Mount the secret as a file named after the last path segment
    file_name = posixpath.basename(key.rstrip("/")) or ref.secret
    item = run_v2.VersionToPath(path=file_name, version=ref.version)
    _upsert(mounts, run_v2.VolumeMount(name=ref.secret, mount_path=key), key=lambda m: m.mount_path)

    # A secret mounted at several paths shares one volume with one item per file
    shared = next(
        (v for v in volumes if v.name == ref.secret and is_secret_volume(v)), None
    )
    if shared is not None:
        items = [_clone(i) for i in shared.secret.items]
        _upsert(items, item, key=lambda i: i.path)
        shared.secret.items = items
        return

    volume = run_v2.Volume(
        name=ref.secret,
        secret=run_v2.SecretVolumeSource(secret=ref.secret, items=[item]),
    )
    _upsert(volumes, volume, key=lambda v: v.name)


def _apply_policies(service: run_v2.Service, options: DeployOptions) -> None:
    service.ingress = INGRESS_TRAFFIC[options.ingress]
    service.invoker_iam_disabled = options.allow_unauthenticated

    if options.default_url:
        service.default_uri_disabled = False
        return

    if service.launch_stage in _PRE_BETA_STAGES:
        service.launch_stage = launch_stage_pb2.LaunchStage.BETA
    service.default_uri_disabled = True


def _apply_vpc_access(template: run_v2.RevisionTemplate, options: DeployOptions) -> None:
    if not options.has_vpc_access:
        return

    vpc_access = run_v2.VpcAccess()
    if options.vpc_connector:
        vpc_access.connector = options.vpc_connector
    if options.network or options.subnet:
        vpc_access.network_interfaces = [
            run_v2.VpcAccess.NetworkInterface(
                network=options.network or "", subnetwork=options.subnet or ""
            )
        ]
    if options.vpc_egress:
        vpc_access.egress = VPC_EGRESS[options.vpc_egress]
    template.vpc_access = vpc_access


def _literal_env(name: str, value: str) -> run_v2.EnvVar:
    return run_v2.EnvVar(name=name, value=value)


def _upsert(items: list[M], item: M, key: Callable[[M], Any]) -> None:
    for i, existing in enumerate(items):
        if key(existing) == key(item):
            items[i] = item
            return
    items.append(item)


def _clone(message: M) -> M:
    cls: Any = type(message)
    return cls.deserialize(cls.serialize(message))  # type: ignore[no-any-return]
