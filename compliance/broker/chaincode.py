import os
import re
import shlex
import logging

from compliance.common.errors import ConfigMissingError
from compliance.broker.transactions import SUBMIT, EVALUATE, build_ctor_args


logger = logging.getLogger(__name__)


CHAINCODE_MOUNT = "github.com/hyperledger/fabric-chaincode-compliance"
GOPATH_SRC = "/opt/gopath/src"
COLLECTIONS_MOUNT = "/etc/hyperledger/private_collections"
CLI_CRYPTO_CONFIG = "/etc/hyperledger/config/crypto-config"


def peer_cli_env(peer):
    """Environment prefix pointing the peer CLI at one peer of the org."""
    peer_folder = (
        f"{CLI_CRYPTO_CONFIG}/peerOrganizations/{peer.domain}/peers/{peer.name}"
    )

    env = [
        ("CORE_PEER_ADDRESS", f"{peer.name}:{peer.port}"),
        ("CORE_PEER_TLS_KEY_FILE", f"{peer_folder}/tls/server.key"),
        ("CORE_PEER_TLS_CERT_FILE", f"{peer_folder}/tls/server.crt"),
        ("CORE_PEER_TLS_ROOTCERT_FILE", f"{peer_folder}/tls/ca.crt"),
    ]
    return " ".join(f"{name}={shlex.quote(value)}" for name, value in env)


def orderer_ca_file(orderer):
    domain = orderer.name.split(".", 1)[1]
    return (
        f"{CLI_CRYPTO_CONFIG}/ordererOrganizations/{domain}/tlsca/tlsca.{domain}-cert.pem"
    )


def bash(script):
    return ["bash", "-c", script]


class PolicyBuilder:
    """Endorsement policies by name over the orgs admitted to a channel:
    "any", "all", "majority" or "<n> of". Names already written as a
    policy expression (AND/OR/OutOf) are returned as they are.
    """

    EXPRESSION = re.compile(r"^\s*(AND|OR|OutOf)\s*\(")
    N_OF = re.compile(r"^\s*(\d+)\s*of\s*$", re.IGNORECASE)

    def members(self, channel):
        return ", ".join(f"'{org.msp_id}.member'" for org in channel.organisations)

    def build(self, policy_name, channel):
        if self.EXPRESSION.match(policy_name):
            return policy_name.strip()

        total = len(channel.organisations)
        if not total:
            raise ValueError(f"Channel {channel.name} has no organisations")

        name = policy_name.strip().lower()
        match = self.N_OF.match(name)

        if name == "any":
            required = 1
        elif name == "all":
            required = total
        elif name == "majority":
            required = total // 2 + 1
        elif match:
            required = int(match.group(1))
        else:
            raise ValueError(f"Unknown endorsement policy {policy_name}")

        if required < 1 or required > total:
            raise ValueError(
                f"Policy {policy_name} needs {required} of {total} orgs on "
                f"channel {channel.name}"
            )

        return f"OutOf({required}, {self.members(channel)})"


class ChaincodeOperations:
    """Chaincode steps run against the workspace network: install on the
    channel peers, instantiate with the configured policy and collection,
    then submit/evaluate transactions and compare results.
    """

    def __init__(self, workspace, transactions, executor, settings, policy_builder=None):
        self.workspace = workspace
        self.transactions = transactions
        self.executor = executor
        self.settings = settings
        self.policy_builder = policy_builder or PolicyBuilder()

    @property
    def network(self):
        return self.workspace.network

    def chaincode_path(self, chaincode_name):
        return f"{CHAINCODE_MOUNT}/{chaincode_name}"

    async def install_all(self, channel_name, chaincode_name):
        channel = self.network.get_channel(channel_name)
        language = self.workspace.language

        if language == "golang":
            prefix = ""
            first_cli = channel.organisations[0].cli
            source = f"{GOPATH_SRC}/{self.chaincode_path(chaincode_name)}"
            logger.info(f"Vendoring golang chaincode {chaincode_name}")
            await self.executor.exec(
                first_cli,
                bash(
                    f"cd {shlex.quote(source)} && "
                    "GO111MODULE=on GOCACHE=on go mod vendor"
                ),
            )
        else:
            prefix = "/gopath/src/"

        path = prefix + self.chaincode_path(chaincode_name)

        for org in channel.organisations:
            for peer in org.peers:
                logger.info(f"Installing chaincode {chaincode_name} on {peer.name}")
                await self.executor.exec(
                    org.cli,
                    bash(
                        f"{peer_cli_env(peer)} peer chaincode install "
                        f"-l {language} -n {shlex.quote(chaincode_name)} -v 0 "
                        f"-p {shlex.quote(path)}"
                    ),
                )

    def configure_endorsement_policy(self, chaincode_name, channel_name, policy_name):
        channel = self.network.get_channel(channel_name)
        policy = self.policy_builder.build(policy_name, channel)
        self.workspace.update_chaincode_policy(chaincode_name, policy)
        return policy

    def configure_private_collection(self, chaincode_name, channel_name, collection_file):
        collection = os.path.join(self.settings.collections_folder(), collection_file)

        if not os.path.isfile(collection):
            raise ConfigMissingError(
                f"Private collection {collection_file} for chaincode "
                f"{chaincode_name} on channel {channel_name} not found"
            )

        self.workspace.update_chaincode_collection(chaincode_name, collection)
        return collection

    def instantiate_command(self, org, chaincode_name, channel_name, function_name, args):
        peer = org.peers[0]
        orderer = self.network.get_default_orderer()
        config = self.workspace.instantiation_config(chaincode_name)

        command = [
            peer_cli_env(peer),
            "peer chaincode instantiate",
            f"-o {orderer.name}:{orderer.port}",
            f"-l {self.workspace.language}",
            f"-C {shlex.quote(channel_name)}",
            f"-n {shlex.quote(chaincode_name)}",
            "-v 0",
            "--tls true",
            f"--cafile {orderer_ca_file(orderer)}",
            f"-c {shlex.quote(build_ctor_args(function_name, args))}",
        ]

        if config.policy:
            command.append(f"-P {shlex.quote(config.policy)}")

        if config.collection:
            collection = f"{COLLECTIONS_MOUNT}/{os.path.basename(config.collection)}"
            command.append(f"--collections-config {shlex.quote(collection)}")

        return " ".join(command)

    async def instantiate(
        self, org_name, chaincode_name, channel_name, function_name=None, args=None
    ):
        org = self.network.get_organisation(org_name)
        command = self.instantiate_command(
            org, chaincode_name, channel_name, function_name, args
        )

        logger.info(
            f"Instantiating chaincode {chaincode_name} on channel {channel_name} "
            f"by org {org_name}"
        )
        await self.executor.exec(org.cli, bash(command))
        self.workspace.mark_instantiated(chaincode_name)

        return await self.transactions.wait_until_ready(
            org_name, chaincode_name, channel_name
        )

    async def transact(
        self, org_name, mode, chaincode_name, function_name, channel_name, identity, args=None
    ):
        return await self.transactions.execute(
            org_name, mode, chaincode_name, function_name, channel_name, identity, args
        )

    async def submit(self, org_name, chaincode_name, function_name, channel_name, identity, args=None):
        return await self.transact(
            org_name, SUBMIT, chaincode_name, function_name, channel_name, identity, args
        )

    async def evaluate(self, org_name, chaincode_name, function_name, channel_name, identity, args=None):
        return await self.transact(
            org_name, EVALUATE, chaincode_name, function_name, channel_name, identity, args
        )

    async def expect_result(
        self,
        expected,
        org_name,
        mode,
        chaincode_name,
        function_name,
        channel_name,
        identity,
        args=None,
    ):
        data = await self.transact(
            org_name, mode, chaincode_name, function_name, channel_name, identity, args
        )

        if data != expected:
            raise AssertionError(
                f"Result did not match expected. Wanted {expected} got {data}"
            )

        return data
