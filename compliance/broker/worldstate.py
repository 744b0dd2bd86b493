import asyncio
import logging
from functools import partial
from urllib.parse import quote

import requests

from compliance.common.errors import WorldStateError


logger = logging.getLogger(__name__)

logging.getLogger("requests").setLevel(logging.WARNING)
logging.getLogger("urllib3").setLevel(logging.WARNING)


class WorldState:
    """Reads the CouchDB view of the ledger kept by each organisation
    database. Chaincode state lives in the `<channel>_<chaincode>`
    database, values as the `valueBytes` attachment of each key document.
    """

    headers = {"Accept": "application/json"}

    def __init__(self, network, session=None, host="127.0.0.1", timeout=10):
        self.network = network
        self.session = session or requests.Session()
        self.host = host
        self.timeout = timeout

    def database_url(self, org, channel_name, chaincode_name):
        return f"http://{self.host}:{org.db.external_port}/{channel_name}_{chaincode_name}"

    def document_url(self, org, channel_name, chaincode_name, key):
        return "/".join(
            [self.database_url(org, channel_name, chaincode_name), quote(key, safe="")]
        )

    def databases(self):
        for org in self.network.topology.organisations:
            if not org.db:
                logger.debug(f"Org {org.name} has no world state database")
                continue
            yield org

    async def _get(self, url):
        loop = asyncio.get_event_loop()
        logger.debug(f"World state request {url}")

        try:
            response = await loop.run_in_executor(
                None,
                partial(self.session.get, url, headers=self.headers, timeout=self.timeout),
            )
        except requests.RequestException as e:
            raise WorldStateError(f"World state request {url} failed - {e}") from e

        return response

    async def read_value(self, org, channel_name, chaincode_name, key):
        url = self.document_url(org, channel_name, chaincode_name, key) + "/valueBytes"
        response = await self._get(url)

        if response.status_code != 200:
            raise WorldStateError(
                f"Key {key} not readable in world state of org {org.name} - "
                f"status {response.status_code} {response.text}"
            )

        return response.content.decode("utf-8")

    async def assert_value(self, chaincode_name, channel_name, value, key):
        for org in self.databases():
            logger.info(f"Reading world state for {org.name}")
            data = await self.read_value(org, channel_name, chaincode_name, key)

            if data != value:
                raise AssertionError(
                    f"World state of org {org.name} holds {data} for key {key} - "
                    f"expected {value}"
                )

    async def assert_deleted(self, chaincode_name, channel_name, key):
        for org in self.databases():
            url = self.document_url(org, channel_name, chaincode_name, key)
            response = await self._get(url)

            if response.status_code == 200:
                raise AssertionError(
                    f"Key {key} still exists in world state of org {org.name}"
                )

            try:
                reason = response.json().get("reason")
            except ValueError:
                reason = None

            if response.status_code != 404 or reason != "deleted":
                raise WorldStateError(
                    f"Key {key} lookup in world state of org {org.name} failed - "
                    f"status {response.status_code} reason {reason}"
                )
