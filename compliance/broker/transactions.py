import json
import asyncio
import logging

from compliance.common.errors import TransactionError, InstantiationTimeoutError


logger = logging.getLogger(__name__)


SUBMIT = "submit"
EVALUATE = "evaluate"
MODES = (SUBMIT, EVALUATE)

METADATA_FUNCTION = "org.hyperledger.fabric:getMetadata"
READINESS_ATTEMPTS = 10
READINESS_DELAY = 2


def _reject_constant(name):
    raise ValueError(f"{name} is not valid JSON")


def encode_cli_arg(item):
    """JSON text is embedded as its JSON literal, anything else as a
    quoted string literal. NaN and Infinity count as plain strings.
    """
    try:
        value = json.loads(item, parse_constant=_reject_constant)
    except (TypeError, ValueError):
        return json.dumps(item)
    return json.dumps(value)


def encode_cli_args(args):
    return "[" + ", ".join(encode_cli_arg(item) for item in args) + "]"


def build_ctor_args(function_name=None, args=None):
    """Constructor message for peer chaincode instantiate: the function
    name first, always a string, followed by the encoded args.
    """
    if not function_name:
        return json.dumps({"Args": []})

    items = [json.dumps(function_name)]
    items.extend(encode_cli_arg(item) for item in args or [])
    return '{"Args": [' + ", ".join(items) + "]}"


class Gateway:
    """Client side connection to a channel, scoped to one identity.

    connect(connection_profile, options) where options carries
    credential_store, identity, msp_id, org_name and discovery;
    get_channel(name) returns an object with get_contract(name), whose
    create_transaction(function) returns an object with the awaitable
    submit(*args) and evaluate(*args).
    """

    async def connect(self, connection_profile, options):
        raise NotImplementedError

    async def get_channel(self, channel_name):
        raise NotImplementedError

    def disconnect(self):
        pass


class TransactionExecutor:
    def __init__(self, network, gateway_factory, sleep=asyncio.sleep):
        self.network = network
        self.gateway_factory = gateway_factory
        self.sleep = sleep

    def _decode(self, data):
        if isinstance(data, (bytes, bytearray)):
            return data.decode("utf-8")
        if data is None:
            return ""
        return str(data)

    async def execute(
        self, org_name, mode, contract_name, function_name, channel_name, identity, args=None
    ):
        if mode not in MODES:
            raise ValueError(f"Unknown transaction mode {mode} - use one of {MODES}")

        org = self.network.get_organisation(org_name)
        args = list(args) if args else []

        logger.debug(
            f"Transaction {mode} {contract_name}:{function_name} on channel "
            f"{channel_name} as {identity}@{org_name} - args {args}"
        )

        gateway = self.gateway_factory()
        try:
            await gateway.connect(
                org.connection_profile,
                {
                    "credential_store": org.credential_store,
                    "identity": identity,
                    "msp_id": org.msp_id,
                    "org_name": org.name,
                    "discovery": {"enabled": True, "as_localhost": True},
                },
            )
            channel = await gateway.get_channel(channel_name)
            contract = channel.get_contract(contract_name)
            transaction = contract.create_transaction(function_name)
            data = await getattr(transaction, mode)(*args)

        except Exception as e:
            raise TransactionError(
                f"Transaction {mode} {contract_name}:{function_name} failed for org "
                f"{org_name} on channel {channel_name}: {e}",
                org=org_name,
                channel=channel_name,
                contract=contract_name,
                function=function_name,
                cause=e,
            ) from e

        finally:
            gateway.disconnect()

        result = self._decode(data)
        logger.debug(f"Transaction {contract_name}:{function_name} result {result}")
        return result

    async def wait_until_ready(
        self,
        org_name,
        contract_name,
        channel_name,
        attempts=READINESS_ATTEMPTS,
        delay=READINESS_DELAY,
    ):
        """Polls the contract metadata until the contract answers.

        Returns:
            int -- The attempt that succeeded

        Raises:
            InstantiationTimeoutError -- After all attempts failed
        """
        last_error = None

        for attempt in range(1, attempts + 1):
            try:
                await self.execute(
                    org_name,
                    EVALUATE,
                    contract_name,
                    METADATA_FUNCTION,
                    channel_name,
                    "admin",
                    [],
                )
            except TransactionError as e:
                last_error = e
                logger.debug(
                    f"Chaincode {contract_name} not ready - attempt {attempt}/{attempts}"
                )
                if attempt < attempts:
                    await self.sleep(delay)
            else:
                logger.info(f"Chaincode {contract_name} ready after {attempt} attempts")
                return attempt

        logger.error(f"Chaincode {contract_name} readiness failed: {last_error}")
        raise InstantiationTimeoutError(
            f"Waiting for chaincode {contract_name} to instantiate on channel "
            f"{channel_name} timed out after {attempts} attempts",
            attempts=attempts,
        ) from last_error
