import logging


logger = logging.getLogger(__name__)


class ChaincodeConfig:
    def __init__(self, policy=None, collection=None):
        self.policy = policy
        self.collection = collection

    def __repr__(self):
        return f"ChaincodeConfig(policy={self.policy!r}, collection={self.collection!r})"


class Workspace:
    """Per test run context: the active network, the chaincode language
    and the runtime config of each chaincode, keyed by chaincode name.
    A chaincode config is frozen once the chaincode has been instantiated.
    """

    def __init__(self, network, language):
        self.network = network
        self.language = language
        self.chaincodes = {}
        self._instantiated = set()

    def get_config(self, chaincode_name):
        config = self.chaincodes.get(chaincode_name)
        if config is None:
            config = ChaincodeConfig()
        return config

    def _update(self, chaincode_name, **fields):
        if chaincode_name in self._instantiated:
            raise ValueError(
                f"Chaincode {chaincode_name} already instantiated - config is frozen"
            )

        config = self.get_config(chaincode_name)
        for name, value in fields.items():
            setattr(config, name, value)

        self.chaincodes[chaincode_name] = config
        logger.debug(f"Chaincode {chaincode_name} config updated {config}")

    def update_chaincode_policy(self, chaincode_name, policy):
        self._update(chaincode_name, policy=policy)

    def update_chaincode_collection(self, chaincode_name, collection):
        self._update(chaincode_name, collection=collection)

    def instantiation_config(self, chaincode_name):
        config = self.get_config(chaincode_name)
        return ChaincodeConfig(config.policy, config.collection)

    def mark_instantiated(self, chaincode_name):
        self._instantiated.add(chaincode_name)
