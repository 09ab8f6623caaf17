"""Cloud Controller (v3 API) implementation of PlatformOperations.

All calls are scoped to the organization and space of the configured
PlatformTarget. The space GUID is resolved once, on first use.

Asynchronous Cloud Controller operations (deletes, manifest application,
managed service instances) answer with a job location; the client polls
the job until it completes so that failures surface on the calling unit
of work.

Creating an application also pushes its code: the bits under its path, or
its docker image, become a package that is staged into a droplet, and the
app is started on that droplet. The password of a private docker registry
is read from ``CF_DOCKER_PASSWORD``.
"""

from __future__ import annotations

import asyncio
import io
import logging
import os
import zipfile
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import httpx
import yaml

from .config import ENV_DOCKER_PASSWORD, PlatformTarget
from .exceptions import PlatformError, TargetNotFoundError
from .models import Application, ApplicationManifest, HealthCheckType, Service, parse_megabytes

logger = logging.getLogger(__name__)

# Application annotations holding the settings the platform has no field for
PATH_ANNOTATION = "cf-apply.io/path"
META_ANNOTATION = "cf-apply.io/meta"

SPACE_DEVELOPER_ROLE = "space_developer"
WEB_PROCESS = "web"

DEFAULT_JOB_POLL_INTERVAL = 1.0
DEFAULT_JOB_POLL_ATTEMPTS = 300

BITS_CONTENT_TYPE = "application/zip"


def manifest_from_document(entry: dict[str, Any]) -> ApplicationManifest:
    """Build manifest settings from one entry of a Cloud Controller app manifest."""
    web = next(
        (p for p in entry.get("processes") or [] if p.get("type") == WEB_PROCESS),
        {},
    )
    buildpacks = entry.get("buildpacks") or []
    docker = entry.get("docker") or {}
    services = [s if isinstance(s, str) else s.get("name") for s in entry.get("services") or []]
    return ApplicationManifest(
        buildpack=buildpacks[0] if buildpacks else entry.get("buildpack"),
        command=web.get("command", entry.get("command")),
        disk=parse_megabytes(web.get("disk_quota", entry.get("disk_quota"))),
        docker_image=docker.get("image"),
        docker_username=docker.get("username"),
        environment_variables={
            str(k): "" if v is None else str(v) for k, v in (entry.get("env") or {}).items()
        },
        health_check_http_endpoint=web.get("health-check-http-endpoint"),
        health_check_type=HealthCheckType.parse(web.get("health-check-type")),
        instances=web.get("instances", entry.get("instances")),
        memory=parse_megabytes(web.get("memory", entry.get("memory"))),
        no_route=True if entry.get("no-route") else None,
        routes=[r["route"] for r in entry.get("routes") or [] if r.get("route")],
        services=[s for s in services if s],
        stack=entry.get("stack"),
        timeout=web.get("timeout", entry.get("timeout")),
    )


def manifest_to_document(name: str, manifest: ApplicationManifest) -> dict[str, Any]:
    """Render manifest settings as a Cloud Controller app manifest."""
    entry: dict[str, Any] = {"name": name}
    if manifest.buildpack is not None:
        entry["buildpacks"] = [manifest.buildpack]
    if manifest.stack is not None:
        entry["stack"] = manifest.stack
    if manifest.docker_image is not None:
        docker = {"image": manifest.docker_image}
        if manifest.docker_username is not None:
            docker["username"] = manifest.docker_username
        entry["docker"] = docker
    if manifest.environment_variables:
        entry["env"] = dict(manifest.environment_variables)
    if manifest.routes:
        entry["routes"] = [{"route": route} for route in manifest.routes]
    if manifest.services:
        entry["services"] = list(manifest.services)
    if manifest.no_route is not None:
        entry["no-route"] = manifest.no_route

    process: dict[str, Any] = {"type": WEB_PROCESS}
    if manifest.instances is not None:
        process["instances"] = manifest.instances
    if manifest.memory is not None:
        process["memory"] = f"{manifest.memory}M"
    if manifest.disk is not None:
        process["disk_quota"] = f"{manifest.disk}M"
    if manifest.command is not None:
        process["command"] = manifest.command
    if manifest.health_check_type is not None:
        process["health-check-type"] = manifest.health_check_type.value
    if manifest.health_check_http_endpoint is not None:
        process["health-check-http-endpoint"] = manifest.health_check_http_endpoint
    if manifest.timeout is not None:
        process["timeout"] = manifest.timeout
    entry["processes"] = [process]

    return {"version": 1, "applications": [entry]}


def _relationship(guid: str) -> dict[str, Any]:
    return {"data": {"guid": guid}}


def _docker_password(manifest: ApplicationManifest) -> str | None:
    """Read the registry password for a private docker image from the environment."""
    if manifest.docker_image is None or manifest.docker_username is None:
        return None
    password = os.environ.get(ENV_DOCKER_PASSWORD)
    if password is None:
        raise ValueError(
            f"Docker password is not set in environment variable: {ENV_DOCKER_PASSWORD}"
        )
    return password


def read_bits(path: str | Path) -> bytes:
    """
    Read the application bits to upload.

    A directory is zipped with paths relative to it; a file is taken to be
    an archive already (zip, jar or war) and sent as is.
    """
    path = Path(path)
    if path.is_file():
        return path.read_bytes()
    if not path.is_dir():
        raise ValueError(f"Application path not found: {path}")
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for file in sorted(p for p in path.rglob("*") if p.is_file()):
            archive.write(file, file.relative_to(path).as_posix())
    return buffer.getvalue()


class CloudControllerClient:
    """
    Async Cloud Controller client scoped to one space.

    Use as an async context manager, or call ``close()`` when done.

    Args:
        target: Validated platform target
        transport: Optional httpx transport (injected for testing)
        job_poll_interval: Seconds between job status polls
        job_poll_attempts: Polls before a job is considered timed out
    """

    def __init__(
        self,
        target: PlatformTarget,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        job_poll_interval: float = DEFAULT_JOB_POLL_INTERVAL,
        job_poll_attempts: int = DEFAULT_JOB_POLL_ATTEMPTS,
    ) -> None:
        self._target = target.validate()
        self._job_poll_interval = job_poll_interval
        self._job_poll_attempts = job_poll_attempts
        self._http = httpx.AsyncClient(
            base_url=(target.api_url or "").rstrip("/"),
            headers={"Authorization": target.authorization, "Accept": "application/json"},
            verify=target.verify_ssl,
            timeout=target.timeout,
            transport=transport,
        )
        self._space_guid: str | None = None
        self._space_lock = asyncio.Lock()

    async def __aenter__(self) -> CloudControllerClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._http.aclose()

    # -------------------------------------------------------------------------
    # HTTP helpers
    # -------------------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        logger.debug("%s %s", method, url)
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise PlatformError(f"{method} {url} failed: {e}") from e
        if response.is_error:
            errors: list[dict[str, Any]] = []
            try:
                errors = response.json().get("errors", [])
            except ValueError:
                pass
            raise PlatformError(
                f"{method} {url} failed", status_code=response.status_code, errors=errors
            )
        return response

    async def _list(
        self,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> tuple[list[dict[str, Any]], dict[str, list[dict[str, Any]]]]:
        """Fetch all pages of a list endpoint.

        Returns:
            All resources, and the merged ``included`` section.
        """
        resources: list[dict[str, Any]] = []
        included: dict[str, list[dict[str, Any]]] = {}
        next_url: str | None = url
        next_params = dict(params or {})
        while next_url:
            body = (await self._request("GET", next_url, params=next_params or None)).json()
            resources.extend(body.get("resources", []))
            for key, values in (body.get("included") or {}).items():
                included.setdefault(key, []).extend(values)
            next_url = ((body.get("pagination") or {}).get("next") or {}).get("href")
            next_params = {}
        return resources, included

    async def _wait_for_job(self, response: httpx.Response) -> None:
        location = response.headers.get("Location")
        if response.status_code != 202 or not location:
            return
        for _ in range(self._job_poll_attempts):
            job = (await self._request("GET", location)).json()
            state = job.get("state")
            if state == "COMPLETE":
                return
            if state == "FAILED":
                raise PlatformError(
                    f"Job {job.get('operation', location)} failed", errors=job.get("errors")
                )
            await asyncio.sleep(self._job_poll_interval)
        raise PlatformError(f"Timed out waiting for job {location}")

    async def _wait_for_state(
        self, url: str, ready: str, failed: Sequence[str]
    ) -> dict[str, Any]:
        """Poll a package or build until it reaches ``ready``."""
        for _ in range(self._job_poll_attempts):
            resource = (await self._request("GET", url)).json()
            state = resource.get("state")
            if state == ready:
                return resource
            if state in failed:
                raise PlatformError(f"{url} is {state}: {resource.get('error') or 'no details'}")
            await asyncio.sleep(self._job_poll_interval)
        raise PlatformError(f"Timed out waiting for {url} to become {ready}")

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def space_guid(self) -> str:
        """Resolve (once) the GUID of the targeted space."""
        if self._space_guid is None:
            async with self._space_lock:
                if self._space_guid is None:
                    self._space_guid = await self._resolve_space()
        return self._space_guid

    async def _resolve_space(self) -> str:
        org_name = self._target.organization
        space_name = self._target.space
        orgs, _ = await self._list("/v3/organizations", {"names": org_name})
        if not orgs:
            raise TargetNotFoundError("Organization", str(org_name))
        spaces, _ = await self._list(
            "/v3/spaces", {"names": space_name, "organization_guids": orgs[0]["guid"]}
        )
        if not spaces:
            raise TargetNotFoundError("Space", str(space_name))
        logger.debug("Targeting space %s (%s)", space_name, spaces[0]["guid"])
        return str(spaces[0]["guid"])

    async def _find_one(self, url: str, resource_type: str, name: str, **params: Any) -> str:
        space = await self.space_guid()
        resources, _ = await self._list(url, {"names": name, "space_guids": space, **params})
        if not resources:
            raise TargetNotFoundError(resource_type, name)
        return str(resources[0]["guid"])

    async def _app_guid(self, name: str) -> str:
        return await self._find_one("/v3/apps", "Application", name)

    async def _service_guid(self, name: str) -> str:
        return await self._find_one("/v3/service_instances", "Service instance", name)

    async def _web_process_guid(self, app_guid: str) -> str:
        process = (await self._request("GET", f"/v3/apps/{app_guid}/processes/{WEB_PROCESS}")).json()
        return str(process["guid"])

    # -------------------------------------------------------------------------
    # Live state
    # -------------------------------------------------------------------------

    async def get_applications(self) -> dict[str, Application]:
        space = await self.space_guid()
        resources, _ = await self._list("/v3/apps", {"space_guids": space})
        applications = await asyncio.gather(*(self._read_application(r) for r in resources))
        return {r["name"]: app for r, app in zip(resources, applications, strict=True)}

    async def _read_application(self, resource: dict[str, Any]) -> Application:
        response = await self._request("GET", f"/v3/apps/{resource['guid']}/manifest")
        document = yaml.safe_load(response.text) or {}
        entries: Sequence[dict[str, Any]] = document.get("applications") or [{}]
        annotations = (resource.get("metadata") or {}).get("annotations") or {}
        return Application(
            path=annotations.get(PATH_ANNOTATION),
            meta=annotations.get(META_ANNOTATION),
            manifest=manifest_from_document(entries[0]),
        )

    async def get_services(self) -> dict[str, Service]:
        space = await self.space_guid()
        resources, included = await self._list(
            "/v3/service_instances",
            {
                "space_guids": space,
                "type": "managed",
                "fields[service_plan]": "guid,name,relationships.service_offering",
                "fields[service_plan.service_offering]": "guid,name",
            },
        )
        plans = {p["guid"]: p for p in included.get("service_plans", [])}
        offerings = {o["guid"]: o["name"] for o in included.get("service_offerings", [])}

        parameters = await asyncio.gather(*(self._read_parameters(r["guid"]) for r in resources))

        services: dict[str, Service] = {}
        for resource, params in zip(resources, parameters, strict=True):
            plan_guid = (
                (resource.get("relationships") or {}).get("service_plan", {}).get("data") or {}
            ).get("guid")
            plan = plans.get(plan_guid, {})
            offering_guid = (
                (plan.get("relationships") or {}).get("service_offering", {}).get("data") or {}
            ).get("guid")
            services[resource["name"]] = Service(
                service=offerings.get(offering_guid),
                plan=plan.get("name"),
                tags=list(resource.get("tags") or []),
                parameters=params,
            )
        return services

    async def _read_parameters(self, service_guid: str) -> dict[str, Any]:
        try:
            response = await self._request("GET", f"/v3/service_instances/{service_guid}/parameters")
        except PlatformError as e:
            # Brokers may not support fetching parameters
            if e.status_code in (400, 404, 502):
                logger.debug("Parameters of service %s not retrievable: %s", service_guid, e)
                return {}
            raise
        return dict(response.json() or {})

    async def get_space_developers(self) -> list[str]:
        return [username for username, _ in await self._space_developer_roles()]

    async def _space_developer_roles(self) -> list[tuple[str, str]]:
        """Return (username, role guid) for every space developer role."""
        space = await self.space_guid()
        roles, included = await self._list(
            "/v3/roles",
            {"types": SPACE_DEVELOPER_ROLE, "space_guids": space, "include": "user"},
        )
        users = {u["guid"]: u for u in included.get("users", [])}
        result = []
        for role in roles:
            user_guid = (
                (role.get("relationships") or {}).get("user", {}).get("data") or {}
            ).get("guid")
            user = users.get(user_guid, {})
            result.append((user.get("username") or user_guid, role["guid"]))
        return result

    # -------------------------------------------------------------------------
    # Applications
    # -------------------------------------------------------------------------

    async def create_application(self, name: str, application: Application) -> None:
        if not name:
            raise ValueError("Application name cannot be empty")
        if application is None:
            raise ValueError("Application contents cannot be None")

        manifest = application.manifest
        docker_password = _docker_password(manifest)
        bits = None
        if manifest.docker_image is None and application.path is not None:
            bits = await asyncio.to_thread(read_bits, application.path)

        space = await self.space_guid()
        document = manifest_to_document(name, manifest)
        response = await self._request(
            "POST",
            f"/v3/spaces/{space}/actions/apply_manifest",
            content=yaml.safe_dump(document, sort_keys=False),
            headers={"Content-Type": "application/x-yaml"},
        )
        await self._wait_for_job(response)

        annotations = {PATH_ANNOTATION: application.path, META_ANNOTATION: application.meta}
        annotated = any(v is not None for v in annotations.values())
        has_code = manifest.docker_image is not None or bits is not None
        if annotated or has_code:
            guid = await self._app_guid(name)
            if annotated:
                await self._request(
                    "PATCH",
                    f"/v3/apps/{guid}",
                    json={"metadata": {"annotations": annotations}},
                )
            if has_code:
                await self._push(guid, manifest, bits, docker_password)
        logger.info("App created: %s", name)

    async def _push(
        self,
        app_guid: str,
        manifest: ApplicationManifest,
        bits: bytes | None,
        docker_password: str | None,
    ) -> None:
        """Upload a package for the app, stage it and start the app on the droplet."""
        body: dict[str, Any] = {"relationships": {"app": _relationship(app_guid)}}
        if bits is None:
            body["type"] = "docker"
            body["data"] = {"image": manifest.docker_image}
            if manifest.docker_username is not None:
                body["data"]["username"] = manifest.docker_username
                body["data"]["password"] = docker_password
            package = (await self._request("POST", "/v3/packages", json=body)).json()["guid"]
        else:
            body["type"] = "bits"
            package = (await self._request("POST", "/v3/packages", json=body)).json()["guid"]
            await self._request(
                "POST",
                f"/v3/packages/{package}/upload",
                files={"bits": ("application.zip", bits, BITS_CONTENT_TYPE)},
            )
            logger.debug("Uploaded %d bytes to package %s", len(bits), package)
        await self._wait_for_state(f"/v3/packages/{package}", "READY", ("FAILED", "EXPIRED"))

        build = (
            await self._request("POST", "/v3/builds", json={"package": {"guid": package}})
        ).json()
        staged = await self._wait_for_state(f"/v3/builds/{build['guid']}", "STAGED", ("FAILED",))
        droplet = staged["droplet"]["guid"]

        await self._request(
            "PATCH",
            f"/v3/apps/{app_guid}/relationships/current_droplet",
            json=_relationship(droplet),
        )
        await self._request("POST", f"/v3/apps/{app_guid}/actions/start")

    async def delete_application(self, name: str) -> None:
        guid = await self._app_guid(name)
        await self._wait_for_job(await self._request("DELETE", f"/v3/apps/{guid}"))
        logger.info("App removed: %s", name)

    async def rename_application(self, current_name: str, new_name: str) -> None:
        guid = await self._app_guid(current_name)
        await self._request("PATCH", f"/v3/apps/{guid}", json={"name": new_name})
        logger.info("Application renamed from %s to %s", current_name, new_name)

    async def scale_application(
        self,
        name: str,
        *,
        instances: int | None = None,
        memory: int | None = None,
        disk: int | None = None,
    ) -> None:
        body = {
            key: value
            for key, value in (
                ("instances", instances),
                ("memory_in_mb", memory),
                ("disk_in_mb", disk),
            )
            if value is not None
        }
        if not body:
            return
        guid = await self._app_guid(name)
        await self._request(
            "POST",
            f"/v3/apps/{guid}/processes/{WEB_PROCESS}/actions/scale",
            json=body,
        )
        logger.info("Application %s was scaled", name)

    async def set_health_check(self, name: str, health_check_type: HealthCheckType) -> None:
        process = await self._web_process_guid(await self._app_guid(name))
        await self._request(
            "PATCH",
            f"/v3/processes/{process}",
            json={"health_check": {"type": HealthCheckType.parse(health_check_type).value}},
        )
        logger.info("The health check type of the app %s was set to %s", name, health_check_type)

    async def set_environment_variable(self, name: str, variable: str, value: str) -> None:
        guid = await self._app_guid(name)
        await self._request(
            "PATCH",
            f"/v3/apps/{guid}/environment_variables",
            json={"var": {variable: value}},
        )
        logger.info("Environment variable %s was set for the app %s", variable, name)

    async def unset_environment_variable(self, name: str, variable: str) -> None:
        guid = await self._app_guid(name)
        await self._request(
            "PATCH",
            f"/v3/apps/{guid}/environment_variables",
            json={"var": {variable: None}},
        )
        logger.info("Environment variable %s was removed from the app %s", variable, name)

    async def bind_service(self, application_name: str, service_name: str) -> None:
        app_guid, service_guid = await asyncio.gather(
            self._app_guid(application_name), self._service_guid(service_name)
        )
        response = await self._request(
            "POST",
            "/v3/service_credential_bindings",
            json={
                "type": "app",
                "relationships": {
                    "app": _relationship(app_guid),
                    "service_instance": _relationship(service_guid),
                },
            },
        )
        await self._wait_for_job(response)
        logger.info("App %s bound to service %s", application_name, service_name)

    async def unbind_service(self, application_name: str, service_name: str) -> None:
        app_guid, service_guid = await asyncio.gather(
            self._app_guid(application_name), self._service_guid(service_name)
        )
        bindings, _ = await self._list(
            "/v3/service_credential_bindings",
            {"app_guids": app_guid, "service_instance_guids": service_guid},
        )
        if not bindings:
            raise TargetNotFoundError("Service binding", f"{application_name}/{service_name}")
        for binding in bindings:
            response = await self._request(
                "DELETE", f"/v3/service_credential_bindings/{binding['guid']}"
            )
            await self._wait_for_job(response)
        logger.info("App %s unbound from service %s", application_name, service_name)

    # -------------------------------------------------------------------------
    # Services
    # -------------------------------------------------------------------------

    async def create_service(self, name: str, service: Service) -> None:
        if service is None or not service.service or not service.plan:
            raise ValueError(f"Service {name} needs both an offering and a plan")

        space = await self.space_guid()
        plans, _ = await self._list(
            "/v3/service_plans",
            {
                "names": service.plan,
                "service_offering_names": service.service,
                "space_guids": space,
            },
        )
        if not plans:
            raise TargetNotFoundError("Service plan", f"{service.service}/{service.plan}")

        body: dict[str, Any] = {
            "type": "managed",
            "name": name,
            "relationships": {
                "space": _relationship(space),
                "service_plan": _relationship(plans[0]["guid"]),
            },
        }
        if service.tags:
            body["tags"] = list(service.tags)
        if service.parameters:
            body["parameters"] = dict(service.parameters)

        response = await self._request("POST", "/v3/service_instances", json=body)
        await self._wait_for_job(response)
        logger.info("Service created: %s", name)

    async def delete_service(self, name: str) -> None:
        guid = await self._service_guid(name)
        await self._wait_for_job(await self._request("DELETE", f"/v3/service_instances/{guid}"))
        logger.info("Service removed: %s", name)

    # -------------------------------------------------------------------------
    # Space developers
    # -------------------------------------------------------------------------

    async def assign_space_developer(self, username: str) -> None:
        space = await self.space_guid()
        await self._request(
            "POST",
            "/v3/roles",
            json={
                "type": SPACE_DEVELOPER_ROLE,
                "relationships": {
                    "user": {"data": {"username": username}},
                    "space": _relationship(space),
                },
            },
        )
        logger.info("Space developer assigned: %s", username)

    async def remove_space_developer(self, username: str) -> None:
        roles = [guid for user, guid in await self._space_developer_roles() if user == username]
        if not roles:
            raise TargetNotFoundError("Space developer", username)
        for role in roles:
            await self._wait_for_job(await self._request("DELETE", f"/v3/roles/{role}"))
        logger.info("Space developer removed: %s", username)
