import os
import logging
import argparse
import yaml


logger = logging.getLogger(__name__)


RESOURCES_FOLDER = os.path.normpath(
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "../resources")
)

LANGUAGES = ["golang", "java", "node"]
LOGGING_LEVELS = ["info", "debug"]


class Settings:
    """Run settings shared by the network lifecycle and the chaincode
    operations. Built once by the caller and handed to each component,
    there is no module level instance.
    """

    defaults = {
        "resource_root": RESOURCES_FOLDER,
        "chaincode_dir": None,
        "language": "golang",
        "logging_level": "info",
        "image_tag": ":1.4.1",
        "couchdb_tag": ":0.4.15",
        "fabric_debug": "info",
        "compose_command": "docker-compose",
        "ca_admin": "admin",
        "ca_admin_secret": "adminpw",
        "log_file": "/tmp/compliance/logs/compliance.log",
    }

    def __init__(self, **kwargs):
        unknown = set(kwargs) - set(self.defaults)
        if unknown:
            raise TypeError(f"Unknown settings: {sorted(unknown)}")

        for name, value in self.defaults.items():
            setattr(self, name, kwargs.get(name, value))

    @property
    def debug(self):
        return self.logging_level == "debug"

    def networks_folder(self):
        return os.path.join(self.resource_root, "networks")

    def shared_folder(self):
        return os.path.join(self.networks_folder(), "shared")

    def collections_folder(self):
        return os.path.join(self.resource_root, "private_collections")

    def dump(self):
        return {name: getattr(self, name) for name in self.defaults}

    def __repr__(self):
        return f"Settings({self.dump()})"


class Config:
    def __init__(self):
        self._info = None
        self.cfg = {}
        self.parser = argparse.ArgumentParser(
            description="Fabric Chaincode Compliance"
        )

    def get(self):
        return self._info

    def get_cfg_attrib(self, name):
        try:
            value = getattr(self.cfg, name)
        except AttributeError as e:
            logger.debug(f"Argparser attrib name not found - exception {e}")
            value = None
        return value

    def load(self, filename):
        data = {}
        with open(filename, "r") as f:
            data = yaml.load(f, Loader=yaml.SafeLoader)
        return data or {}

    def add_arguments(self, parser):
        parser.add_argument(
            "--cfg",
            type=str,
            help="Define a YAML file with settings (default: None)",
        )

        parser.add_argument(
            "-d",
            "--chaincode-dir",
            type=str,
            help="Directory containing the chaincodes for testing (default: None)",
        )

        parser.add_argument(
            "-l",
            "--language",
            type=str,
            help="Language of chaincodes that will be used (golang, java, node)",
        )

        parser.add_argument(
            "--logging-level",
            type=str,
            help="Set logging level (info, debug) (default: info)",
        )

        parser.add_argument(
            "--resource-root",
            type=str,
            help="Folder holding the networks definitions (default: bundled)",
        )

    def parse(self, argv=None):
        self.add_arguments(self.parser)
        self.cfg, _ = self.parser.parse_known_args(argv)

        info = self.check()
        if info:
            self._info = info
            return True

        return False

    def cfg_args(self):
        cfgFile = self.get_cfg_attrib("cfg")
        if cfgFile:
            cfg_data = self.load(cfgFile)
            return cfg_data
        return {}

    def check(self):
        try:
            values = self.cfg_args()
        except (OSError, yaml.YAMLError) as e:
            print(f"Could not load cfg file {self.get_cfg_attrib('cfg')} - {e}")
            return None

        for name in ["chaincode_dir", "language", "logging_level", "resource_root"]:
            value = self.get_cfg_attrib(name)
            if value is not None:
                values[name] = value

        try:
            settings = Settings(**values)
        except TypeError as e:
            print(f"Settings not OK: {e}")
            return None

        if settings.language not in LANGUAGES:
            print(f"Settings not OK: language {settings.language} not in {LANGUAGES}")
            return None

        if settings.logging_level not in LOGGING_LEVELS:
            print(
                f"Settings not OK: logging level {settings.logging_level} "
                f"not in {LOGGING_LEVELS}"
            )
            return None

        if settings.chaincode_dir and not os.path.isdir(settings.chaincode_dir):
            print(f"Settings not OK: chaincode dir {settings.chaincode_dir} not found")
            return None

        return settings
