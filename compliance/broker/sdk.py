import json
import asyncio
import logging
from functools import partial

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization

from hfc.fabric import Client
from hfc.fabric.peer import Peer
from hfc.fabric_ca.caservice import ca_service, Enrollment as CAEnrollment
from hfc.fabric_network.wallet import FileSystenWallet

from compliance.common.errors import UnknownEntityError
from compliance.broker.transactions import Gateway
from compliance.scenario.identity import CAClient, Enrollment


logger = logging.getLogger(__name__)


class SdkTransaction:
    def __init__(self, contract, function_name):
        self.contract = contract
        self.function_name = function_name

    async def submit(self, *args):
        gateway = self.contract.channel.gateway
        return await gateway.client.chaincode_invoke(
            requestor=gateway.user,
            channel_name=self.contract.channel.name,
            peers=gateway.peers,
            fcn=self.function_name,
            args=[str(arg) for arg in args],
            cc_name=self.contract.name,
            wait_for_event=True,
        )

    async def evaluate(self, *args):
        gateway = self.contract.channel.gateway
        return await gateway.client.chaincode_query(
            requestor=gateway.user,
            channel_name=self.contract.channel.name,
            peers=gateway.peers,
            fcn=self.function_name,
            args=[str(arg) for arg in args],
            cc_name=self.contract.name,
        )


class SdkContract:
    def __init__(self, channel, name):
        self.channel = channel
        self.name = name

    def create_transaction(self, function_name):
        return SdkTransaction(self, function_name)


class SdkChannel:
    def __init__(self, gateway, name):
        self.gateway = gateway
        self.name = name

    def get_contract(self, contract_name):
        return SdkContract(self, contract_name)


class SdkGateway(Gateway):
    """Gateway over the Fabric Python SDK client, loaded from the
    organisation connection profile. The identity comes from the
    organisation wallet.

    Without discovery, requests go to the peers the profile lists for
    the organisation. With discovery enabled, the first of those peers
    is asked for the channel members and every discovered peer becomes a
    target. Discovered peers are resolved through the connection profile
    of the organisation owning them; as_localhost keeps the profile url
    instead of the endpoint announced inside the docker network.
    """

    def __init__(self, topology=None):
        self.topology = topology
        self.client = None
        self.user = None
        self.peers = []
        self.discovery = {}

    async def connect(self, connection_profile, options):
        org_name = options["org_name"]
        store = options["credential_store"]

        self.client = Client(net_profile=connection_profile)
        self.discovery = options.get("discovery") or {}

        wallet = FileSystenWallet(path=store.path)
        self.user = wallet.create_user(options["identity"], org_name, options["msp_id"])

        organisation = self.client.get_net_info("organizations", org_name)
        self.peers = list(organisation.get("peers", []))

        logger.debug(
            f"Gateway connected for {options['identity']}@{org_name} - peers {self.peers}"
        )

    def _peer_bundle(self, name):
        for org in self.topology.organisations if self.topology else []:
            if any(peer.name == name for peer in org.peers):
                with open(org.connection_profile) as f:
                    return json.load(f)["peers"][name]

        raise UnknownEntityError(f"Discovered peer {name} is not part of the network")

    def discovered_peer(self, name, endpoint):
        bundle = dict(self._peer_bundle(name))
        if not self.discovery.get("as_localhost"):
            bundle["url"] = endpoint

        peer = Peer(name=name)
        if not peer.init_with_bundle(bundle):
            raise ValueError(f"Discovered peer {name} has an incomplete profile entry")
        return peer

    async def discover_peers(self, channel_name):
        target = self.client.get_peer(self.peers[0])
        members = await self.client.query_peers(
            self.user, target, channel=channel_name, local=False
        )

        names = []
        peers_by_msp = members.get("local_peers", {})
        for msp_id in sorted(peers_by_msp):
            for info in peers_by_msp[msp_id]["peers"]:
                endpoint = info["endpoint"]
                name = endpoint.rsplit(":", 1)[0]
                if name not in self.client.peers:
                    self.client.peers[name] = self.discovered_peer(name, endpoint)
                names.append(name)

        logger.debug(f"Discovered peers on channel {channel_name}: {names}")
        return names

    async def get_channel(self, channel_name):
        if not self.client.get_channel(channel_name):
            self.client.new_channel(channel_name)

        if self.discovery.get("enabled") and self.peers:
            self.peers = await self.discover_peers(channel_name)

        return SdkChannel(self, channel_name)

    def disconnect(self):
        self.client = None
        self.user = None
        self.peers = []
        self.discovery = {}


def private_key_pem(key):
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


class SdkCAClient(CAClient):
    def __init__(self, url, trusted_root_cert, ca_name):
        self.url = url
        self.service = ca_service(
            target=url, ca_certs_path=trusted_root_cert, ca_name=ca_name
        )

    async def _call(self, function, *args, **kwargs):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, partial(function, *args, **kwargs))

    async def enroll(self, enrollment_id, secret):
        logger.debug(f"Enrolling {enrollment_id} at {self.url}")
        enrollment = await self._call(self.service.enroll, enrollment_id, secret)

        certificate = enrollment.cert
        if isinstance(certificate, bytes):
            certificate = certificate.decode("utf-8")

        return Enrollment(certificate, private_key_pem(enrollment.private_key))

    async def register(self, request, registrar):
        key = serialization.load_pem_private_key(
            registrar.private_key.encode("utf-8"), None, default_backend()
        )
        admin = CAEnrollment(
            key, registrar.certificate.encode("utf-8"), service=self.service
        )

        logger.debug(f"Registering {request.enrollment_id} at {self.url}")
        return await self._call(
            admin.register,
            request.enrollment_id,
            role=request.role,
            affiliation=request.affiliation,
            attrs=request.attrs,
        )
