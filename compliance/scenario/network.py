import os
import shutil
import logging
from enum import Enum, auto

from compliance.design.topology import (
    TopologyParser,
    COMPOSE_FILE,
    CONNECTION_PROFILES_FOLDER,
    CRYPTO_CONFIG_FOLDER,
    WALLETS_FOLDER,
)
from compliance.design.profiles import ConnectionProfileGenerator


logger = logging.getLogger(__name__)


CLI_CONTAINER = "cli"
CHAINCODE_PREFIX = "dev-peer"

GENERATE_CRYPTO_COMMANDS = [
    "cryptogen generate --config=/etc/hyperledger/config/crypto-config.yaml "
    "--output /etc/hyperledger/config/crypto-config",
    "configtxgen -profile Genesis -outputBlock /etc/hyperledger/config/genesis.block",
    "cp /etc/hyperledger/fabric/core.yaml /etc/hyperledger/config",
    "sh /etc/hyperledger/tools/rename_sk.sh",
]

CLEANUP_CRYPTO_COMMAND = [
    "bash",
    "-c",
    "cd /etc/hyperledger/config; rm -rf crypto-config; rm -f *.tx; "
    "rm -f core.yaml; rm -f *.block; rm -f $(ls | grep -e '.*_anchors.tx')",
]


class NetworkType(Enum):
    SINGLE_ORG = auto()
    MULTI_ORG = auto()


class NetworkState(Enum):
    IDLE = "idle"
    TEARING_DOWN_EXISTING = "tearing-down-existing"
    BUILDING = "building"
    ACTIVE = "active"
    TEARING_DOWN = "tearing-down"


def network_type_to_string(network_type):
    return network_type.name.lower().replace("_", "-")


def network_tag(name):
    head, *tail = name.split("-")
    return "@" + head + "".join(part.capitalize() for part in tail)


class Network:
    """Lifecycle of one test network: teardown of whatever is running,
    crypto material generation, container start and admin enrollment,
    then the reverse on teardown.
    """

    def __init__(self, network_type, settings, executor, enrollment):
        self.type = network_type
        self.name = network_type_to_string(network_type)
        self.settings = settings
        self.executor = executor
        self.enrollment = enrollment
        self.state = NetworkState.IDLE

        self.details = {
            "resource_folder": self.resource_folder(self.name),
            "tag": network_tag(self.name),
        }

        parser = TopologyParser(self.name, self.details["resource_folder"])
        self.topology = parser.parse()

        self.profiles = ConnectionProfileGenerator(
            template_path=os.path.join(
                settings.shared_folder(),
                "connection-profiles",
                "connection_profile.yaml",
            ),
            crypto_config_path=os.path.join(
                self.details["resource_folder"], CRYPTO_CONFIG_FOLDER
            ),
            default_orderer=self.topology.get_default_orderer(),
        )

    @property
    def tag(self):
        return self.details["tag"]

    def resource_folder(self, name):
        return os.path.join(self.settings.networks_folder(), name)

    def compose_file(self, name):
        return os.path.join(self.resource_folder(name), COMPOSE_FILE)

    def cli_compose_file(self):
        return os.path.join(
            self.settings.shared_folder(), "docker-compose", "docker-compose-cli.yaml"
        )

    def get_organisation(self, org_name):
        return self.topology.get_organisation(org_name)

    def get_profile(self, profile_name):
        return self.topology.get_profile(profile_name)

    def get_channel(self, channel_name):
        return self.topology.get_channel(channel_name)

    def add_channel(self, channel):
        self.topology.add_channel(channel)

    def get_default_orderer(self):
        return self.topology.get_default_orderer()

    def _set_state(self, state):
        logger.debug(f"Network {self.name} state {self.state.value} -> {state.value}")
        self.state = state

    async def build(self):
        logger.info(f"Building network {self.name}")

        try:
            await self.teardown_existing()

            self._set_state(NetworkState.BUILDING)
            self.create_orgs_network_interaction_files()
            self.configure_env_vars()
            await self.generate_crypto()
            await self.executor.up(self.compose_file(self.name), self.name)
            await self.enrollment.enroll_admins(self.topology)

        except Exception:
            logger.error(f"Network {self.name} build failed", exc_info=True)
            self._set_state(NetworkState.IDLE)
            raise

        self._set_state(NetworkState.ACTIVE)
        logger.info(f"Network {self.name} active")

    async def teardown(self):
        logger.info(f"Tearing down network {self.name}")
        self._set_state(NetworkState.TEARING_DOWN)

        try:
            await self.teardown_network(self.name)
            await self.cleanup_chaincode()
        finally:
            self._set_state(NetworkState.IDLE)

        self.topology.channels.clear()

    async def teardown_existing(self):
        self._set_state(NetworkState.TEARING_DOWN_EXISTING)

        network_names = [network_type_to_string(nt) for nt in NetworkType]
        up_networks = await self.executor.list_active_projects(network_names)

        for network in up_networks:
            logger.info(f"Network {network} is up - tearing it down")
            await self.teardown_network(network)

        await self.cleanup_chaincode()
        self._set_state(NetworkState.IDLE)

    async def teardown_network(self, network):
        self.configure_env_vars(self.resource_folder(network))
        await self.executor.down(self.compose_file(network), network)
        await self.cleanup_crypto(network)

        network_folder = self.resource_folder(network)
        for folder in [WALLETS_FOLDER, CONNECTION_PROFILES_FOLDER]:
            path = os.path.join(network_folder, folder)
            if os.path.isdir(path):
                shutil.rmtree(path)
                logger.debug(f"Removed directory: {path}")

    def create_orgs_network_interaction_files(self):
        for org in self.topology.organisations:
            self.profiles.ensure(org)
            org.credential_store.ensure()

    def configure_env_vars(self, resource_folder=None):
        os.environ["FABRIC_IMG_TAG"] = self.settings.image_tag
        os.environ["FABRIC_COUCHDB_TAG"] = self.settings.couchdb_tag
        os.environ["FABRIC_DEBUG"] = self.settings.fabric_debug
        os.environ["NETWORK_FOLDER"] = resource_folder or self.details["resource_folder"]

    async def generate_crypto(self):
        cli_compose = self.cli_compose_file()

        await self.executor.up(cli_compose)
        for command in GENERATE_CRYPTO_COMMANDS:
            await self.executor.exec(CLI_CONTAINER, command)
        await self.executor.down(cli_compose, None, True)

    async def cleanup_crypto(self, network):
        logger.info(f"Removing crypto material of network {network}")
        cli_compose = self.cli_compose_file()

        await self.executor.up(cli_compose)
        await self.executor.exec(CLI_CONTAINER, CLEANUP_CRYPTO_COMMAND)
        await self.executor.down(cli_compose, None, True)

    async def cleanup_chaincode(self):
        await self.executor.remove_containers(CHAINCODE_PREFIX)
        await self.executor.remove_images(CHAINCODE_PREFIX)
