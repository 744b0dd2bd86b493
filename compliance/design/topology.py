import os
import re
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import yaml

from compliance.common.errors import (
    ConfigParseError,
    ConfigMissingError,
    ConfigInconsistencyError,
    UnknownEntityError,
)
from compliance.scenario.wallet import CredentialStore


logger = logging.getLogger(__name__)


CRYPTO_CONFIG_FILE = "crypto-material/crypto-config.yaml"
CONFIGTX_FILE = "crypto-material/configtx.yaml"
COMPOSE_FILE = "docker-compose/docker-compose.yaml"
CRYPTO_CONFIG_FOLDER = "crypto-material/crypto-config"
CONNECTION_PROFILES_FOLDER = "connection-profiles"
WALLETS_FOLDER = "wallets"

PEER_IDENTIFIER = "peer[0-9]*"
CA_IDENTIFIER = "tlsca"
DB_IDENTIFIER = "couchdb[0-9]*"


@dataclass
class BaseComponent:
    name: str
    port: int
    external_port: int


@dataclass
class Peer(BaseComponent):
    event_port: int = 0
    external_event_port: int = 0

    def __post_init__(self):
        self.event_port = self.port + 2
        self.external_event_port = self.external_port + 2

    @property
    def domain(self):
        return self.name.split(".", 1)[1]


@dataclass
class CertificateAuthority(BaseComponent):
    trusted_root_cert: str = ""


@dataclass
class Orderer(BaseComponent):
    pass


@dataclass
class Database(BaseComponent):
    type: str = "couch"


@dataclass
class Organisation:
    name: str
    msp_id: str
    cli: str
    peers: List[Peer]
    cas: List[CertificateAuthority]
    connection_profile: str
    credential_store: CredentialStore
    db: Optional[Database] = None


@dataclass
class Profile:
    name: str
    organisations: List[Organisation] = field(default_factory=list)


@dataclass
class Channel:
    name: str
    organisations: List[Organisation] = field(default_factory=list)


@dataclass
class NetworkTopology:
    name: str
    organisations: List[Organisation]
    orderers: List[Orderer]
    profiles: Dict[str, Profile]
    channels: Dict[str, Channel] = field(default_factory=dict)

    def get_organisation(self, org_name):
        for org in self.organisations:
            if org.name == org_name:
                return org
        raise UnknownEntityError(f'Org "{org_name}" not found')

    def get_profile(self, profile_name):
        if profile_name not in self.profiles:
            raise UnknownEntityError(f'Profile "{profile_name}" not found')
        return self.profiles[profile_name]

    def get_channel(self, channel_name):
        if channel_name not in self.channels:
            raise UnknownEntityError(f'Channel "{channel_name}" not found')
        return self.channels[channel_name]

    def add_channel(self, channel):
        self.channels[channel.name] = channel
        logger.info("Channel registered %s", channel.name)

    def register_channel(self, channel_name, profile_name):
        profile = self.get_profile(profile_name)
        channel = Channel(channel_name, list(profile.organisations))
        self.add_channel(channel)
        return channel

    def get_default_orderer(self):
        return self.orderers[0]


def org_to_small(org_name):
    """Canonical form of an organisation name used in hostnames:
    OrgName -> org-name, acronyms (ORG) -> org.
    """
    if org_name.upper() == org_name:
        return org_name.lower()

    small = re.sub(
        r"(?:^|\.?)([A-Z])", lambda match: "-" + match.group(1).lower(), org_name
    )
    return re.sub(r"^-", "", small)


class TopologyParser:
    """Reads the declarative files of one network folder into a
    NetworkTopology. The folder holds:

    - crypto-material/crypto-config.yaml: the PeerOrgs (order kept)
    - crypto-material/configtx.yaml: the channel application Profiles
    - docker-compose/docker-compose.yaml: the services, whose role comes
      from `extends.service` (or an `x-role` extension field)
    """

    def __init__(self, name, resource_folder):
        self.name = name
        self.resource_folder = resource_folder
        self._files = {}

    def _path(self, relative):
        return os.path.join(self.resource_folder, relative)

    def read_file(self, relative):
        if relative in self._files:
            return self._files[relative]

        filepath = self._path(relative)
        try:
            with open(filepath, "r") as f:
                data = yaml.load(f, Loader=yaml.SafeLoader)
        except FileNotFoundError as e:
            raise ConfigMissingError(f"Config file {filepath} not found") from e
        except yaml.YAMLError as e:
            raise ConfigParseError(f"Config file {filepath} malformed: {e}") from e

        if not isinstance(data, dict):
            raise ConfigParseError(f"Config file {filepath} is not a mapping")

        self._files[relative] = data
        return data

    def parse(self):
        logger.info("Parsing topology %s from %s", self.name, self.resource_folder)
        self._files = {}

        organisations = self.parse_orgs()
        orderers = self.parse_orderers()
        profiles = self.parse_profiles()

        msp_ids = [org.msp_id for org in organisations]
        duplicated = sorted({msp for msp in msp_ids if msp_ids.count(msp) > 1})
        if duplicated:
            raise ConfigInconsistencyError(f"Duplicated MSP ids {duplicated}")

        topology = NetworkTopology(
            name=self.name,
            organisations=organisations,
            orderers=orderers,
            profiles=profiles,
        )
        logger.debug(
            "Topology %s: orgs %s, orderers %s, profiles %s",
            self.name,
            [org.name for org in organisations],
            [orderer.name for orderer in orderers],
            list(profiles),
        )
        return topology

    def parse_orgs(self):
        crypto_config = self.read_file(CRYPTO_CONFIG_FILE)
        peer_orgs = crypto_config.get("PeerOrgs")

        if not isinstance(peer_orgs, list) or not peer_orgs:
            raise ConfigParseError(f"{CRYPTO_CONFIG_FILE} declares no PeerOrgs")

        orgs = []
        for org in peer_orgs:
            org_name = org.get("Name") if isinstance(org, dict) else None
            if not org_name:
                raise ConfigParseError(f"{CRYPTO_CONFIG_FILE} has a PeerOrg without Name")
            orgs.append(self.build_org(org_name, org_name + "MSP"))

        return orgs

    def parse_profiles(self):
        configtx = self.read_file(CONFIGTX_FILE)
        declared = configtx.get("Profiles") or {}

        if not isinstance(declared, dict):
            raise ConfigParseError(f"{CONFIGTX_FILE} Profiles is not a mapping")

        known_orgs = [org.get("Name") for org in self.read_file(CRYPTO_CONFIG_FILE)["PeerOrgs"]]

        profiles = {}
        for profile_name, profile in declared.items():
            application = (profile or {}).get("Application")
            if not application:
                logger.debug("Profile %s has no Application section", profile_name)
                continue

            organisations = []
            for org in application.get("Organizations") or []:
                msp_id = org.get("Name") if isinstance(org, dict) else None
                if not msp_id:
                    raise ConfigParseError(
                        f"Profile {profile_name} lists an organization without Name"
                    )

                org_name = msp_id.split("MSP")[0]
                if org_name not in known_orgs:
                    raise ConfigInconsistencyError(
                        f"Profile {profile_name} references undeclared org {msp_id}"
                    )
                organisations.append(self.build_org(org_name, msp_id))

            profiles[profile_name] = Profile(profile_name, organisations)

        return profiles

    def parse_orderers(self):
        orderers = []
        for service_name, service in self.services().items():
            if self.service_role(service) == "orderer":
                port, external_port = self.service_ports(service_name, service)
                orderers.append(Orderer(service_name, port, external_port))

        if not orderers:
            raise ConfigInconsistencyError(f"{COMPOSE_FILE} declares no orderer service")

        return orderers

    def build_org(self, org_name, msp_id):
        peers = [
            Peer(name, port, external_port)
            for name, port, external_port in self.parse_component(org_name, "peer")
        ]
        cas = [
            CertificateAuthority(
                name, port, external_port, self.trusted_root_cert(org_name, name)
            )
            for name, port, external_port in self.parse_component(org_name, "ca")
        ]

        if not peers:
            raise ConfigInconsistencyError(f"Org {org_name} has no peer services")
        if not cas:
            raise ConfigInconsistencyError(f"Org {org_name} has no CA services")

        dbs = [
            Database(name, port, external_port)
            for name, port, external_port in self.parse_component(org_name, "couchdb")
        ]

        return Organisation(
            name=org_name,
            msp_id=msp_id,
            cli=org_to_small(org_name) + "_cli",
            peers=peers,
            cas=cas,
            connection_profile=self.connection_profile_path(org_name),
            credential_store=CredentialStore(self.wallet_path(org_name)),
            db=dbs[0] if dbs else None,
        )

    def services(self):
        compose = self.read_file(COMPOSE_FILE)
        services = compose.get("services") or {}
        if not isinstance(services, dict):
            raise ConfigParseError(f"{COMPOSE_FILE} services is not a mapping")
        return services

    def service_role(self, service):
        if not isinstance(service, dict):
            return None
        if "x-role" in service:
            return service.get("x-role")
        extends = service.get("extends")
        if isinstance(extends, dict):
            return extends.get("service")
        return None

    def service_ports(self, service_name, service):
        ports = service.get("ports") or []
        if not ports:
            raise ConfigInconsistencyError(
                f"Service {service_name} declares no published ports"
            )

        mapping = ports[0]
        try:
            if isinstance(mapping, dict):
                external, internal = mapping["published"], mapping["target"]
            else:
                fields = str(mapping).split(":")
                external, internal = fields[-2], fields[-1]
            return int(internal), int(external)
        except (KeyError, IndexError, ValueError) as e:
            raise ConfigParseError(
                f"Service {service_name} port mapping {mapping} malformed"
            ) from e

    def parse_component(self, org_name, role):
        identifiers = {
            "peer": PEER_IDENTIFIER,
            "ca": CA_IDENTIFIER,
            "couchdb": DB_IDENTIFIER,
        }
        pattern = re.compile(
            identifiers[role] + r"\." + re.escape(org_to_small(org_name)) + r"\.com"
        )

        components = []
        for service_name, service in self.services().items():
            if self.service_role(service) != role:
                continue
            if pattern.fullmatch(service_name):
                port, external_port = self.service_ports(service_name, service)
                components.append((service_name, port, external_port))

        return components

    def trusted_root_cert(self, org_name, ca_name):
        return self._path(
            os.path.join(
                CRYPTO_CONFIG_FOLDER,
                "peerOrganizations",
                org_to_small(org_name) + ".com",
                "tlsca",
                ca_name + "-cert.pem",
            )
        )

    def connection_profile_path(self, org_name):
        return self._path(
            os.path.join(
                CONNECTION_PROFILES_FOLDER, f"{org_name}-connection-profile.json"
            )
        )

    def wallet_path(self, org_name):
        return self._path(os.path.join(WALLETS_FOLDER, org_name))
