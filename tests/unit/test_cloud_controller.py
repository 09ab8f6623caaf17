"""Tests for the Cloud Controller client."""

import io
import json
import zipfile
from collections.abc import Callable
from typing import Any

import httpx
import pytest
import yaml

from cf_apply.cloud_controller import (
    META_ANNOTATION,
    PATH_ANNOTATION,
    CloudControllerClient,
    manifest_from_document,
    manifest_to_document,
    read_bits,
)
from cf_apply.config import PlatformTarget
from cf_apply.differ import compute_diff
from cf_apply.exceptions import ConfigurationError, PlatformError, TargetNotFoundError
from cf_apply.models import (
    Application,
    ApplicationManifest,
    ConfigTree,
    HealthCheckType,
    Service,
    field_names,
)
from cf_apply.operations_protocol import PlatformOperations

API = "https://api.example.com"
JOB_URL = f"{API}/v3/jobs/job-guid"

Handler = Callable[[httpx.Request], httpx.Response]


def _page(
    resources: list[dict[str, Any]],
    included: dict[str, Any] | None = None,
    next_href: str | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "pagination": {"next": {"href": next_href} if next_href else None},
        "resources": resources,
    }
    if included:
        body["included"] = included
    return body


def _by_name(resources: list[dict[str, Any]]) -> Handler:
    """List handler honouring the ``names`` filter."""

    def handler(request: httpx.Request) -> httpx.Response:
        names = request.url.params.get("names")
        selected = [r for r in resources if names is None or r["name"] in names.split(",")]
        return httpx.Response(200, json=_page(selected))

    return handler


class FakeCloudController:
    """Routes requests by method and path and records them."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], Handler] = {}
        self.json("GET", "/v3/organizations", _page([{"guid": "org-guid", "name": "org"}]))
        self.json("GET", "/v3/spaces", _page([{"guid": "space-guid", "name": "dev"}]))
        self.json("GET", "/v3/jobs/job-guid", {"state": "COMPLETE"})

    def route(self, method: str, path: str, handler: Handler) -> None:
        self.routes[(method, path)] = handler

    def json(self, method: str, path: str, body: Any = None, status: int = 200, **kw: Any) -> None:
        self.route(method, path, lambda request: httpx.Response(status, json=body, **kw))

    def job(self, method: str, path: str) -> None:
        self.route(method, path, lambda request: httpx.Response(202, headers={"Location": JOB_URL}))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(
                404,
                json={"errors": [{"detail": f"Unknown route {request.method} {request.url.path}"}]},
            )
        return route(request)

    def sent(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def body(self, method: str, path: str) -> Any:
        (request,) = self.sent(method, path)
        return json.loads(request.content)


def _stage_routes(cc: FakeCloudController) -> None:
    """Register the package, build and droplet endpoints of a successful push."""
    cc.job("POST", "/v3/spaces/space-guid/actions/apply_manifest")
    cc.json("PATCH", "/v3/apps/app-guid", {"guid": "app-guid"})
    cc.json("POST", "/v3/packages", {"guid": "pkg-guid", "state": "PROCESSING_UPLOAD"}, status=201)
    cc.json("POST", "/v3/packages/pkg-guid/upload", {"guid": "pkg-guid", "state": "PROCESSING_UPLOAD"})
    cc.json("GET", "/v3/packages/pkg-guid", {"guid": "pkg-guid", "state": "READY"})
    cc.json("POST", "/v3/builds", {"guid": "build-guid", "state": "STAGING"}, status=201)
    builds = iter(
        [
            {"guid": "build-guid", "state": "STAGING"},
            {"guid": "build-guid", "state": "STAGED", "droplet": {"guid": "droplet-guid"}},
        ]
    )
    cc.route("GET", "/v3/builds/build-guid", lambda request: httpx.Response(200, json=next(builds)))
    cc.json("PATCH", "/v3/apps/app-guid/relationships/current_droplet", {})
    cc.json("POST", "/v3/apps/app-guid/actions/start", {"guid": "app-guid", "state": "STARTED"})


APPS = [
    {
        "guid": "app-guid",
        "name": "app1",
        "metadata": {"annotations": {PATH_ANNOTATION: "./app1", META_ANNOTATION: "v1"}},
    }
]
SERVICE_INSTANCES = [{"guid": "svc-guid", "name": "svc1"}]

APP_MANIFEST = """\
applications:
- name: app1
  buildpacks:
  - ruby_buildpack
  stack: cflinuxfs4
  env:
    RACK_ENV: production
  routes:
  - route: app1.example.com
  services:
  - svc1
  processes:
  - type: web
    instances: 2
    memory: 256M
    disk_quota: 1G
    health-check-type: http
    health-check-http-endpoint: /health
"""


@pytest.fixture
def cc() -> FakeCloudController:
    """Fake Cloud Controller."""
    controller = FakeCloudController()
    controller.route("GET", "/v3/apps", _by_name(APPS))
    controller.route("GET", "/v3/service_instances", _by_name(SERVICE_INSTANCES))
    return controller


@pytest.fixture
def target() -> PlatformTarget:
    return PlatformTarget(api_url=API, organization="org", space="dev", token="abc")


@pytest.fixture
async def client(cc, target):
    """Client wired to the fake Cloud Controller."""
    async with CloudControllerClient(
        target, transport=httpx.MockTransport(cc.handler), job_poll_interval=0
    ) as c:
        yield c


class TestManifestDocuments:
    """Tests for converting Cloud Controller manifests."""

    def test_from_document(self):
        """The web process carries scale and health check settings."""
        entry = yaml.safe_load(APP_MANIFEST)["applications"][0]
        manifest = manifest_from_document(entry)

        assert manifest == ApplicationManifest(
            buildpack="ruby_buildpack",
            disk=1024,
            environment_variables={"RACK_ENV": "production"},
            health_check_http_endpoint="/health",
            health_check_type=HealthCheckType.HTTP,
            instances=2,
            memory=256,
            routes=["app1.example.com"],
            services=["svc1"],
            stack="cflinuxfs4",
        )

    def test_to_document(self):
        """Scale settings are rendered on the web process."""
        document = manifest_to_document(
            "app1",
            ApplicationManifest(
                buildpack="go_buildpack",
                instances=3,
                memory=512,
                docker_image="nginx",
                routes=["a.example.com"],
            ),
        )
        (entry,) = document["applications"]
        assert entry["name"] == "app1"
        assert entry["buildpacks"] == ["go_buildpack"]
        assert entry["docker"] == {"image": "nginx"}
        assert entry["routes"] == [{"route": "a.example.com"}]
        assert entry["processes"] == [{"type": "web", "instances": 3, "memory": "512M"}]

    def test_roundtrip(self):
        """A rendered manifest reads back to the same settings."""
        manifest = ApplicationManifest(
            command="bundle exec rackup",
            disk=2048,
            health_check_type=HealthCheckType.PROCESS,
            instances=1,
            memory=128,
            no_route=True,
            timeout=60,
        )
        (entry,) = manifest_to_document("app1", manifest)["applications"]
        assert manifest_from_document(entry) == manifest

    def test_document_roundtrip_every_field(self):
        """Every declared setting survives create and read back without a diff."""
        desired = Application.from_dict(
            {
                "manifest": {
                    "buildpack": "ruby_buildpack",
                    "command": "bundle exec rackup",
                    "disk": "1G",
                    "dockerImage": "registry.example.com/web:1",
                    "dockerUsername": "deployer",
                    "environmentVariables": {"RACK_ENV": "production", "EMPTY": None},
                    "healthCheckHttpEndpoint": "/health",
                    "healthCheckType": "http",
                    "instances": 2,
                    "memory": "512M",
                    "noRoute": True,
                    "routes": ["web.example.com"],
                    "routePath": "/api",
                    "services": ["db"],
                    "stack": "cflinuxfs4",
                    "timeout": 90,
                }
            }
        )
        declared = desired.manifest
        assert all(getattr(declared, name) not in (None, [], {}) for name in field_names(declared))

        rendered = yaml.safe_dump(manifest_to_document("app1", declared), sort_keys=False)
        assert "512MM" not in rendered
        (entry,) = yaml.safe_load(rendered)["applications"]
        live = Application(manifest=manifest_from_document(entry))

        assert live.manifest == declared
        assert compute_diff(
            ConfigTree(applications={"app1": live}), ConfigTree(applications={"app1": desired})
        ) == []

    def test_size_units_match_live_sizes(self):
        """A size declared with a unit equals the live size in megabytes."""
        desired = ApplicationManifest.from_dict({"memory": "512M", "disk": "1G"})
        (entry,) = yaml.safe_load(APP_MANIFEST)["applications"]
        entry["processes"][0].update(memory="512M", disk_quota="1024M")
        live = manifest_from_document(entry)
        assert (live.memory, live.disk) == (desired.memory, desired.disk)


class TestReadBits:
    """Tests for reading application bits."""

    def test_directory_is_zipped(self, tmp_path):
        """Files under a directory are zipped with relative names."""
        (tmp_path / "lib").mkdir()
        (tmp_path / "app.py").write_text("print('hi')\n")
        (tmp_path / "lib" / "util.py").write_text("")

        with zipfile.ZipFile(io.BytesIO(read_bits(tmp_path))) as archive:
            assert archive.namelist() == ["app.py", "lib/util.py"]
            assert archive.read("app.py") == b"print('hi')\n"

    def test_archive_is_sent_as_is(self, tmp_path):
        """A file path is uploaded unchanged."""
        jar = tmp_path / "app.jar"
        jar.write_bytes(b"PK\x03\x04jar")
        assert read_bits(jar) == b"PK\x03\x04jar"

    def test_missing_path(self, tmp_path):
        """A missing path is rejected."""
        with pytest.raises(ValueError, match="not found"):
            read_bits(tmp_path / "missing")


class TestClient:
    """Tests for connection handling."""

    def test_implements_protocol(self, target):
        """The client satisfies PlatformOperations."""
        assert isinstance(CloudControllerClient(target), PlatformOperations)

    def test_incomplete_target(self):
        """An incomplete target is rejected up front."""
        with pytest.raises(ConfigurationError):
            CloudControllerClient(PlatformTarget(api_url=API))

    async def test_space_resolved_once(self, client, cc):
        """The org and space are looked up on first use only."""
        cc.json("GET", "/v3/roles", _page([]))

        await client.get_space_developers()
        await client.get_space_developers()

        assert len(cc.sent("GET", "/v3/organizations")) == 1
        (spaces,) = cc.sent("GET", "/v3/spaces")
        assert spaces.url.params["names"] == "dev"
        assert spaces.url.params["organization_guids"] == "org-guid"
        assert all(r.headers["Authorization"] == "bearer abc" for r in cc.requests)

    async def test_unknown_space(self, client, cc):
        """A missing space raises TargetNotFoundError."""
        cc.json("GET", "/v3/spaces", _page([]))
        with pytest.raises(TargetNotFoundError, match="Space not found: dev"):
            await client.space_guid()

    async def test_error_response(self, client, cc):
        """Non-2xx responses raise PlatformError with the error detail."""
        cc.json(
            "GET",
            "/v3/organizations",
            {"errors": [{"detail": "Invalid Auth Token", "code": 1000}]},
            status=401,
        )
        with pytest.raises(PlatformError) as exc_info:
            await client.space_guid()
        assert exc_info.value.status_code == 401
        assert "Invalid Auth Token" in str(exc_info.value)

    async def test_transport_error(self, client, cc):
        """Connection failures raise PlatformError."""

        def fail(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        cc.route("GET", "/v3/organizations", fail)
        with pytest.raises(PlatformError, match="connection refused"):
            await client.space_guid()

    async def test_pagination(self, client, cc):
        """All pages of a list are read."""
        pages = iter(
            [
                _page(
                    [{"guid": "r1", "relationships": {"user": {"data": {"guid": "u1"}}}}],
                    included={"users": [{"guid": "u1", "username": "alice"}]},
                    next_href=f"{API}/v3/roles?page=2",
                ),
                _page(
                    [{"guid": "r2", "relationships": {"user": {"data": {"guid": "u2"}}}}],
                    included={"users": [{"guid": "u2", "username": "bob"}]},
                ),
            ]
        )
        cc.route("GET", "/v3/roles", lambda request: httpx.Response(200, json=next(pages)))

        assert await client.get_space_developers() == ["alice", "bob"]
        first, second = cc.sent("GET", "/v3/roles")
        assert first.url.params["types"] == "space_developer"
        assert first.url.params["include"] == "user"
        assert second.url.params["page"] == "2"


class TestApplications:
    """Tests for application operations."""

    async def test_get_applications(self, client, cc):
        """Live applications combine manifest and annotations."""
        cc.route(
            "GET",
            "/v3/apps/app-guid/manifest",
            lambda request: httpx.Response(200, text=APP_MANIFEST),
        )

        apps = await client.get_applications()

        assert list(apps) == ["app1"]
        app = apps["app1"]
        assert app.path == "./app1"
        assert app.meta == "v1"
        assert app.manifest.instances == 2
        assert app.manifest.memory == 256
        assert app.manifest.services == ["svc1"]

    async def test_create_application(self, client, cc):
        """Applications are created from a manifest and annotated."""
        cc.job("POST", "/v3/spaces/space-guid/actions/apply_manifest")
        cc.json("PATCH", "/v3/apps/app-guid", {"guid": "app-guid"})

        await client.create_application(
            "app1",
            Application(meta="v1", manifest=ApplicationManifest(buildpack="ruby_buildpack")),
        )

        (request,) = cc.sent("POST", "/v3/spaces/space-guid/actions/apply_manifest")
        assert request.headers["Content-Type"] == "application/x-yaml"
        document = yaml.safe_load(request.content)
        assert document["applications"][0]["name"] == "app1"
        assert document["applications"][0]["buildpacks"] == ["ruby_buildpack"]
        assert len(cc.sent("GET", "/v3/jobs/job-guid")) == 1
        annotations = cc.body("PATCH", "/v3/apps/app-guid")["metadata"]["annotations"]
        assert annotations == {PATH_ANNOTATION: None, META_ANNOTATION: "v1"}
        assert cc.sent("POST", "/v3/packages") == []

    async def test_create_application_pushes_bits(self, client, cc, tmp_path):
        """The directory under path is zipped, uploaded, staged and started."""
        (tmp_path / "config.ru").write_text("run App\n")
        _stage_routes(cc)

        await client.create_application("app1", Application(path=str(tmp_path)))

        assert cc.body("POST", "/v3/packages") == {
            "relationships": {"app": {"data": {"guid": "app-guid"}}},
            "type": "bits",
        }
        (upload,) = cc.sent("POST", "/v3/packages/pkg-guid/upload")
        assert b'name="bits"' in upload.content
        assert b"config.ru" in upload.content
        assert cc.body("POST", "/v3/builds") == {"package": {"guid": "pkg-guid"}}
        assert len(cc.sent("GET", "/v3/builds/build-guid")) == 2
        assert cc.body("PATCH", "/v3/apps/app-guid/relationships/current_droplet") == {
            "data": {"guid": "droplet-guid"}
        }
        assert len(cc.sent("POST", "/v3/apps/app-guid/actions/start")) == 1
        annotations = cc.body("PATCH", "/v3/apps/app-guid")["metadata"]["annotations"]
        assert annotations[PATH_ANNOTATION] == str(tmp_path)

    async def test_create_application_docker(self, client, cc, monkeypatch):
        """Private docker images are pushed with the password from the environment."""
        monkeypatch.setenv("CF_DOCKER_PASSWORD", "s3cret")
        _stage_routes(cc)

        await client.create_application(
            "app1",
            Application(
                manifest=ApplicationManifest(docker_image="repo/web:1", docker_username="bot")
            ),
        )

        package = cc.body("POST", "/v3/packages")
        assert package["type"] == "docker"
        assert package["data"] == {"image": "repo/web:1", "username": "bot", "password": "s3cret"}
        assert cc.sent("POST", "/v3/packages/pkg-guid/upload") == []
        assert len(cc.sent("POST", "/v3/apps/app-guid/actions/start")) == 1

    async def test_create_application_docker_password_missing(self, client, cc, monkeypatch):
        """A private image without CF_DOCKER_PASSWORD fails before any request."""
        monkeypatch.delenv("CF_DOCKER_PASSWORD", raising=False)
        manifest = ApplicationManifest(docker_image="repo/web:1", docker_username="bot")

        with pytest.raises(ValueError, match="CF_DOCKER_PASSWORD"):
            await client.create_application("app1", Application(manifest=manifest))
        assert cc.requests == []

    async def test_create_application_staging_failed(self, client, cc, tmp_path):
        """A failed build raises PlatformError with the staging error."""
        _stage_routes(cc)
        cc.json(
            "GET",
            "/v3/builds/build-guid",
            {"guid": "build-guid", "state": "FAILED", "error": "NoAppDetectedError"},
        )

        with pytest.raises(PlatformError, match="NoAppDetectedError"):
            await client.create_application("app1", Application(path=str(tmp_path)))
        assert cc.sent("POST", "/v3/apps/app-guid/actions/start") == []

    async def test_create_application_missing_path(self, client, cc, tmp_path):
        """A path that does not exist fails before the app is created."""
        _stage_routes(cc)
        with pytest.raises(ValueError, match="Application path not found"):
            await client.create_application("app1", Application(path=str(tmp_path / "nope")))
        assert cc.requests == []

    async def test_create_application_job_failed(self, client, cc):
        """A failed manifest job raises PlatformError."""
        cc.job("POST", "/v3/spaces/space-guid/actions/apply_manifest")
        cc.json(
            "GET",
            "/v3/jobs/job-guid",
            {"state": "FAILED", "operation": "app.apply_manifest", "errors": [{"detail": "no stack"}]},
        )
        with pytest.raises(PlatformError, match="no stack"):
            await client.create_application("app1", Application())

    async def test_job_polled_until_complete(self, client, cc):
        """Jobs are polled until they leave the processing state."""
        states = iter([{"state": "PROCESSING"}, {"state": "PROCESSING"}, {"state": "COMPLETE"}])
        cc.route("GET", "/v3/jobs/job-guid", lambda request: httpx.Response(200, json=next(states)))
        cc.job("DELETE", "/v3/apps/app-guid")

        await client.delete_application("app1")
        assert len(cc.sent("GET", "/v3/jobs/job-guid")) == 3

    async def test_delete_unknown_application(self, client):
        """Deleting an unknown application raises TargetNotFoundError."""
        with pytest.raises(TargetNotFoundError, match="Application not found: nope"):
            await client.delete_application("nope")

    async def test_rename(self, client, cc):
        """Renaming patches the application name."""
        cc.json("PATCH", "/v3/apps/app-guid", {})
        await client.rename_application("app1", "app2")
        assert cc.body("PATCH", "/v3/apps/app-guid") == {"name": "app2"}

    async def test_scale(self, client, cc):
        """Only the given scale settings are sent."""
        cc.json("POST", "/v3/apps/app-guid/processes/web/actions/scale", {})
        await client.scale_application("app1", instances=3)
        assert cc.body("POST", "/v3/apps/app-guid/processes/web/actions/scale") == {"instances": 3}

    async def test_scale_nothing(self, client, cc):
        """Scaling without settings issues no request."""
        await client.scale_application("app1")
        assert cc.requests == []

    async def test_set_health_check(self, client, cc):
        """The health check is set on the web process."""
        cc.json("GET", "/v3/apps/app-guid/processes/web", {"guid": "proc-guid"})
        cc.json("PATCH", "/v3/processes/proc-guid", {})

        await client.set_health_check("app1", HealthCheckType.PROCESS)

        assert cc.body("PATCH", "/v3/processes/proc-guid") == {"health_check": {"type": "process"}}

    async def test_environment_variables(self, client, cc):
        """Variables are set with a value and unset with null."""
        cc.json("PATCH", "/v3/apps/app-guid/environment_variables", {})

        await client.set_environment_variable("app1", "RACK_ENV", "staging")
        await client.unset_environment_variable("app1", "DEBUG")

        first, second = cc.sent("PATCH", "/v3/apps/app-guid/environment_variables")
        assert json.loads(first.content) == {"var": {"RACK_ENV": "staging"}}
        assert json.loads(second.content) == {"var": {"DEBUG": None}}

    async def test_bind_service(self, client, cc):
        """Binding creates an app credential binding."""
        cc.json("POST", "/v3/service_credential_bindings", {"guid": "binding-guid"}, status=201)

        await client.bind_service("app1", "svc1")

        assert cc.body("POST", "/v3/service_credential_bindings") == {
            "type": "app",
            "relationships": {
                "app": {"data": {"guid": "app-guid"}},
                "service_instance": {"data": {"guid": "svc-guid"}},
            },
        }

    async def test_unbind_service(self, client, cc):
        """Unbinding deletes the matching credential binding."""
        cc.json("GET", "/v3/service_credential_bindings", _page([{"guid": "binding-guid"}]))
        cc.job("DELETE", "/v3/service_credential_bindings/binding-guid")

        await client.unbind_service("app1", "svc1")

        (lookup,) = cc.sent("GET", "/v3/service_credential_bindings")
        assert lookup.url.params["app_guids"] == "app-guid"
        assert lookup.url.params["service_instance_guids"] == "svc-guid"
        assert len(cc.sent("DELETE", "/v3/service_credential_bindings/binding-guid")) == 1

    async def test_unbind_missing_binding(self, client, cc):
        """Unbinding a service that is not bound raises TargetNotFoundError."""
        cc.json("GET", "/v3/service_credential_bindings", _page([]))
        with pytest.raises(TargetNotFoundError):
            await client.unbind_service("app1", "svc1")


class TestServices:
    """Tests for service instance operations."""

    async def test_get_services(self, client, cc):
        """Offering and plan names come from the included resources."""
        cc.json(
            "GET",
            "/v3/service_instances",
            _page(
                [
                    {
                        "guid": "svc-guid",
                        "name": "svc1",
                        "tags": ["sql"],
                        "relationships": {"service_plan": {"data": {"guid": "plan-guid"}}},
                    }
                ],
                included={
                    "service_plans": [
                        {
                            "guid": "plan-guid",
                            "name": "small",
                            "relationships": {
                                "service_offering": {"data": {"guid": "offering-guid"}}
                            },
                        }
                    ],
                    "service_offerings": [{"guid": "offering-guid", "name": "postgres"}],
                },
            ),
        )
        cc.json("GET", "/v3/service_instances/svc-guid/parameters", {"storage": 10})

        services = await client.get_services()

        assert services == {
            "svc1": Service(
                service="postgres", plan="small", tags=["sql"], parameters={"storage": 10}
            )
        }
        (request,) = cc.sent("GET", "/v3/service_instances")
        assert request.url.params["type"] == "managed"

    async def test_parameters_not_retrievable(self, client, cc):
        """Brokers that cannot return parameters yield empty parameters."""
        cc.json(
            "GET",
            "/v3/service_instances/svc-guid/parameters",
            {"errors": [{"detail": "not supported"}]},
            status=502,
        )
        assert await client._read_parameters("svc-guid") == {}

    async def test_create_service(self, client, cc):
        """A service instance is created on the named plan."""
        cc.json("GET", "/v3/service_plans", _page([{"guid": "plan-guid", "name": "small"}]))
        cc.job("POST", "/v3/service_instances")

        await client.create_service(
            "svc1", Service(service="postgres", plan="small", tags=["sql"], parameters={"a": 1})
        )

        (lookup,) = cc.sent("GET", "/v3/service_plans")
        assert lookup.url.params["names"] == "small"
        assert lookup.url.params["service_offering_names"] == "postgres"
        assert cc.body("POST", "/v3/service_instances") == {
            "type": "managed",
            "name": "svc1",
            "relationships": {
                "space": {"data": {"guid": "space-guid"}},
                "service_plan": {"data": {"guid": "plan-guid"}},
            },
            "tags": ["sql"],
            "parameters": {"a": 1},
        }

    async def test_create_service_unknown_plan(self, client, cc):
        """An unknown plan raises TargetNotFoundError."""
        cc.json("GET", "/v3/service_plans", _page([]))
        with pytest.raises(TargetNotFoundError, match="postgres/huge"):
            await client.create_service("svc1", Service(service="postgres", plan="huge"))

    async def test_create_service_requires_plan(self, client):
        """Offering and plan are required."""
        with pytest.raises(ValueError):
            await client.create_service("svc1", Service(service="postgres"))

    async def test_delete_service(self, client, cc):
        """Deleting waits for the deprovisioning job."""
        cc.job("DELETE", "/v3/service_instances/svc-guid")
        await client.delete_service("svc1")
        assert len(cc.sent("GET", "/v3/jobs/job-guid")) == 1


class TestSpaceDevelopers:
    """Tests for space developer role operations."""

    ROLES = _page(
        [
            {"guid": "role-a", "relationships": {"user": {"data": {"guid": "user-a"}}}},
            {"guid": "role-b", "relationships": {"user": {"data": {"guid": "user-b"}}}},
        ],
        included={
            "users": [
                {"guid": "user-a", "username": "alice"},
                {"guid": "user-b", "username": "bob"},
            ]
        },
    )

    async def test_get_space_developers(self, client, cc):
        """Usernames come from the included users."""
        cc.json("GET", "/v3/roles", self.ROLES)
        assert await client.get_space_developers() == ["alice", "bob"]

    async def test_assign(self, client, cc):
        """Assigning creates a role by username."""
        cc.json("POST", "/v3/roles", {"guid": "role-c"}, status=201)
        await client.assign_space_developer("carol")
        assert cc.body("POST", "/v3/roles") == {
            "type": "space_developer",
            "relationships": {
                "user": {"data": {"username": "carol"}},
                "space": {"data": {"guid": "space-guid"}},
            },
        }

    async def test_remove(self, client, cc):
        """Removing deletes the user's role."""
        cc.json("GET", "/v3/roles", self.ROLES)
        cc.json("DELETE", "/v3/roles/role-b", status=202)
        await client.remove_space_developer("bob")
        assert len(cc.sent("DELETE", "/v3/roles/role-b")) == 1
        assert cc.sent("DELETE", "/v3/roles/role-a") == []

    async def test_remove_unknown(self, client, cc):
        """Removing a user without the role raises TargetNotFoundError."""
        cc.json("GET", "/v3/roles", self.ROLES)
        with pytest.raises(TargetNotFoundError, match="carol"):
            await client.remove_space_developer("carol")
