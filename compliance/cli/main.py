import os
import sys
import shutil
import asyncio
import logging

from compliance.common.cfg import Config
from compliance.common.logs import Logs
from compliance.common.errors import ComplianceError
from compliance.scenario.executor import DockerExecutor
from compliance.scenario.identity import EnrollmentManager
from compliance.scenario.network import Network, NetworkType, network_type_to_string


logger = logging.getLogger(__name__)


NETWORKS = {network_type_to_string(nt): nt for nt in NetworkType}
COMMANDS = ["up", "down"]


def sdk_ca_client(url, trusted_root_cert, ca_name):
    from compliance.broker.sdk import SdkCAClient

    return SdkCAClient(url, trusted_root_cert, ca_name)


class App:
    def __init__(self):
        self.cfg = Config()
        self.cfg.parser.add_argument(
            "command", choices=COMMANDS, help="Build (up) or tear down (down) a network"
        )
        self.cfg.parser.add_argument(
            "--network",
            type=str,
            default=network_type_to_string(NetworkType.SINGLE_ORG),
            choices=sorted(NETWORKS),
            help="Network type (default: single-org)",
        )

    def logs(self, screen=True):
        info = self.cfg.get()
        Logs(info.log_file, debug=info.debug, screen=screen)

    def network(self, settings):
        network_type = NETWORKS[self.cfg.get_cfg_attrib("network")]
        executor = DockerExecutor(settings.compose_command)
        enrollment = EnrollmentManager(
            sdk_ca_client, settings.ca_admin, settings.ca_admin_secret
        )
        return Network(network_type, settings, executor, enrollment)

    def copy_chaincode(self, settings):
        if not settings.chaincode_dir:
            return

        target = os.path.join(settings.resource_root, "chaincode")
        if os.path.isdir(target):
            shutil.rmtree(target)

        shutil.copytree(settings.chaincode_dir, target)
        logger.info(f"Chaincode copied from {settings.chaincode_dir} to {target}")

    async def main(self, command):
        settings = self.cfg.get()
        network = self.network(settings)

        if command == "up":
            self.copy_chaincode(settings)
            await network.build()
            logger.info(f"Network {network.name} ({network.tag}) is up")
        else:
            await network.teardown()
            logger.info(f"Network {network.name} is down")

    def init(self, argv=None):
        if not self.cfg.parse(argv):
            return 1

        self.logs()
        command = self.cfg.get_cfg_attrib("command")
        logger.debug(f"Settings {self.cfg.get()}")

        try:
            asyncio.run(self.main(command))
        except ComplianceError as excpt:
            logger.error(f"Command {command} failed - {excpt}")
            return 1
        finally:
            logger.info("App shutdown complete")

        return 0


def run(argv=None):
    app = App()
    return app.init(argv)


if __name__ == "__main__":
    sys.exit(run())
