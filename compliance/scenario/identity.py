import os
import logging

from compliance.common.errors import EnrollmentError
from compliance.scenario.wallet import Identity


logger = logging.getLogger(__name__)


ADMIN_LABEL = "admin"


class Enrollment:
    def __init__(self, certificate, key):
        self.certificate = certificate
        self.key = key


class RegistrationRequest:
    def __init__(self, enrollment_id, role="client", affiliation="", attrs=None):
        self.enrollment_id = enrollment_id
        self.role = role
        self.affiliation = affiliation
        self.attrs = attrs if attrs else []


class CAClient:
    """Certificate authority capability, one instance per CA endpoint."""

    async def enroll(self, enrollment_id, secret):
        raise NotImplementedError

    async def register(self, request, registrar):
        raise NotImplementedError


class EnrollmentManager:
    def __init__(self, ca_client_factory, admin_id="admin", admin_secret="adminpw"):
        """
        Arguments:
            ca_client_factory {callable} -- Called as
            factory(url, trusted_root_cert, ca_name), returns a CAClient
        """
        self.ca_client_factory = ca_client_factory
        self.admin_id = admin_id
        self.admin_secret = admin_secret

    def ca_client(self, org):
        ca = org.cas[0]

        if not os.path.isfile(ca.trusted_root_cert):
            raise EnrollmentError(
                f"Trusted root cert {ca.trusted_root_cert} of CA {ca.name} "
                f"(org {org.name}) not found"
            )

        url = f"https://localhost:{ca.external_port}"
        return self.ca_client_factory(url, ca.trusted_root_cert, ca.name)

    async def enroll_admins(self, topology):
        for org in topology.organisations:
            await self.enroll_admin(org)

    async def enroll_admin(self, org):
        store = org.credential_store

        if store.exists(ADMIN_LABEL):
            logger.debug("Admin already enrolled for org %s", org.name)
            return False

        client = self.ca_client(org)

        try:
            enrollment = await client.enroll(self.admin_id, self.admin_secret)
        except Exception as e:
            raise EnrollmentError(
                f"Admin enrollment failed for org {org.name} on CA {org.cas[0].name}: {e}"
            ) from e

        identity = Identity(org.msp_id, enrollment.certificate, enrollment.key)
        store.import_identity(ADMIN_LABEL, identity)
        logger.info("Admin enrolled for org %s", org.name)
        return True

    async def register_identity(self, org, label, attributes=None):
        store = org.credential_store

        if store.exists(label):
            logger.debug(
                'Identity "%s" already exists for organisation "%s"', label, org.name
            )
            return False

        attrs = []
        for row in attributes or []:
            if len(row) != 2:
                raise ValueError("Attributes table invalid")
            name, value = row
            attrs.append({"name": name, "value": value, "ecert": True})

        registrar = store.get(ADMIN_LABEL)
        if registrar is None:
            raise EnrollmentError(f'Missing admin for organisation "{org.name}"')

        client = self.ca_client(org)
        request = RegistrationRequest(label, role="client", affiliation="", attrs=attrs)

        try:
            secret = await client.register(request, registrar)
            enrollment = await client.enroll(label, secret)
        except Exception as e:
            raise EnrollmentError(
                f'Identity "{label}" registration failed for org {org.name}: {e}'
            ) from e

        store.import_identity(label, Identity(org.msp_id, enrollment.certificate, enrollment.key))
        logger.info('Identity "%s" registered for org %s', label, org.name)
        return True
