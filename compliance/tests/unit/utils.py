import os
import shutil
import tempfile

import yaml

from compliance.common.cfg import RESOURCES_FOLDER, Settings
from compliance.common.errors import LifecycleError
from compliance.scenario.executor import Executor
from compliance.scenario.identity import CAClient, Enrollment
from compliance.broker.transactions import Gateway


class TempResources:
    """Copy of the bundled networks in a temp dir, removed on cleanup."""

    def __init__(self):
        self.tmp = tempfile.mkdtemp(prefix="compliance-")
        self.root = os.path.join(self.tmp, "resources")
        shutil.copytree(RESOURCES_FOLDER, self.root)

    def settings(self, **kwargs):
        return Settings(resource_root=self.root, **kwargs)

    def network_folder(self, name):
        return os.path.join(self.root, "networks", name)

    def cleanup(self):
        shutil.rmtree(self.tmp, ignore_errors=True)


def write_yaml(path, data):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(data, f, default_flow_style=False)


def write_root_certs(topology):
    for org in topology.organisations:
        for ca in org.cas:
            os.makedirs(os.path.dirname(ca.trusted_root_cert), exist_ok=True)
            with open(ca.trusted_root_cert, "w") as f:
                f.write("-----BEGIN CERTIFICATE-----\n" + ca.name + "\n")


class FakeExecutor(Executor):
    def __init__(self, active=None, fail_on=None):
        self.calls = []
        self.active = list(active or [])
        self.fail_on = fail_on

    def _record(self, call):
        self.calls.append(call)
        if self.fail_on and self.fail_on == call[0]:
            raise LifecycleError(f"{call[0]} failed")

    async def up(self, compose_file, project=None):
        self._record(("up", compose_file, project))
        if project:
            self.active.append(project)

    async def down(self, compose_file, project=None, remove_volumes=False):
        self._record(("down", compose_file, project, remove_volumes))
        if project in self.active:
            self.active.remove(project)

    async def exec(self, container, command):
        self._record(("exec", container, command))
        return ""

    async def list_active_projects(self, candidates):
        self._record(("list", tuple(candidates)))
        return [name for name in candidates if name in self.active]

    async def remove_containers(self, prefix):
        self._record(("remove_containers", prefix))

    async def remove_images(self, prefix):
        self._record(("remove_images", prefix))

    def names(self):
        return [call[0] for call in self.calls]

    def execs(self):
        return [call for call in self.calls if call[0] == "exec"]


class FakeCA(CAClient):
    def __init__(self, url, trusted_root_cert, ca_name, registry):
        self.url = url
        self.trusted_root_cert = trusted_root_cert
        self.ca_name = ca_name
        self.registry = registry

    async def enroll(self, enrollment_id, secret):
        self.registry.enrolls.append((self.ca_name, enrollment_id, secret))
        if self.registry.fail:
            raise ConnectionError("CA unreachable")
        return Enrollment(
            f"CERT {enrollment_id}@{self.ca_name}", f"KEY {enrollment_id}@{self.ca_name}"
        )

    async def register(self, request, registrar):
        self.registry.registers.append((self.ca_name, request, registrar))
        return "secret-" + request.enrollment_id


class FakeCARegistry:
    def __init__(self, fail=False):
        self.fail = fail
        self.enrolls = []
        self.registers = []
        self.urls = []

    def __call__(self, url, trusted_root_cert, ca_name):
        self.urls.append(url)
        return FakeCA(url, trusted_root_cert, ca_name, self)


class FakeTransaction:
    def __init__(self, gateway, contract, function_name):
        self.gateway = gateway
        self.contract = contract
        self.function_name = function_name

    async def _call(self, mode, args):
        self.gateway.ledger.calls.append(
            (self.gateway.options["identity"], mode, self.contract, self.function_name, args)
        )
        return self.gateway.ledger.respond(mode, self.contract, self.function_name, args)

    async def submit(self, *args):
        return await self._call("submit", list(args))

    async def evaluate(self, *args):
        return await self._call("evaluate", list(args))


class FakeContract:
    def __init__(self, gateway, name):
        self.gateway = gateway
        self.name = name

    def create_transaction(self, function_name):
        return FakeTransaction(self.gateway, self.name, function_name)


class FakeChannel:
    def __init__(self, gateway, name):
        self.gateway = gateway
        self.name = name

    def get_contract(self, contract_name):
        return FakeContract(self.gateway, contract_name)


class FakeGateway(Gateway):
    def __init__(self, ledger):
        self.ledger = ledger
        self.options = None
        self.connected = False

    async def connect(self, connection_profile, options):
        if not os.path.isfile(connection_profile):
            raise FileNotFoundError(connection_profile)
        self.options = options
        self.connected = True
        self.ledger.connections.append((connection_profile, options))

    async def get_channel(self, channel_name):
        if channel_name not in self.ledger.channels:
            raise LookupError(f"channel {channel_name} unknown")
        return FakeChannel(self, channel_name)

    def disconnect(self):
        self.connected = False
        self.ledger.disconnects += 1


class FakeLedger:
    """Gateway factory answering from a responder callable, which gets
    (mode, contract, function, args) and returns the payload or raises.
    """

    def __init__(self, responder=None, channels=("mychannel",)):
        self.responder = responder
        self.channels = list(channels)
        self.calls = []
        self.connections = []
        self.disconnects = 0

    def respond(self, mode, contract, function_name, args):
        if self.responder:
            return self.responder(mode, contract, function_name, args)
        return b""

    def __call__(self):
        return FakeGateway(self)


class FakeSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
