import os
import json
import logging


logger = logging.getLogger(__name__)


CERT_FILE = "enrollmentCert.pem"
KEY_FILE = "private_sk"
METADATA_FILE = "metadata.json"


class Identity:
    def __init__(self, msp_id, certificate, private_key):
        self.msp_id = msp_id
        self.certificate = certificate
        self.private_key = private_key

    def __eq__(self, other):
        if not isinstance(other, Identity):
            return NotImplemented
        return (self.msp_id, self.certificate, self.private_key) == (
            other.msp_id,
            other.certificate,
            other.private_key,
        )

    def __repr__(self):
        return f"Identity(msp_id={self.msp_id!r})"


class CredentialStore:
    """Filesystem wallet of one organisation: a folder per identity
    label holding the enrollment certificate and private key, in the
    layout the Fabric Python SDK FileSystenWallet reads.
    """

    def __init__(self, path):
        self.path = path

    def __eq__(self, other):
        if not isinstance(other, CredentialStore):
            return NotImplemented
        return self.path == other.path

    def __repr__(self):
        return f"CredentialStore({self.path!r})"

    def ensure(self):
        os.makedirs(self.path, exist_ok=True)
        return self.path

    def _label_dir(self, label):
        return os.path.join(self.path, label)

    def exists(self, label):
        label_dir = self._label_dir(label)
        return os.path.isfile(os.path.join(label_dir, CERT_FILE)) and os.path.isfile(
            os.path.join(label_dir, KEY_FILE)
        )

    def labels(self):
        if not os.path.isdir(self.path):
            return []
        return sorted(label for label in os.listdir(self.path) if self.exists(label))

    def import_identity(self, label, identity):
        label_dir = self._label_dir(label)
        os.makedirs(label_dir, exist_ok=True)

        with open(os.path.join(label_dir, CERT_FILE), "w") as f:
            f.write(identity.certificate)
        with open(os.path.join(label_dir, KEY_FILE), "w") as f:
            f.write(identity.private_key)
        with open(os.path.join(label_dir, METADATA_FILE), "w") as f:
            json.dump({"mspid": identity.msp_id, "type": "X509"}, f, indent=4)

        logger.info("Identity %s imported into wallet %s", label, self.path)

    def get(self, label):
        if not self.exists(label):
            return None

        label_dir = self._label_dir(label)
        with open(os.path.join(label_dir, CERT_FILE), "r") as f:
            certificate = f.read()
        with open(os.path.join(label_dir, KEY_FILE), "r") as f:
            private_key = f.read()

        msp_id = None
        metadata_path = os.path.join(label_dir, METADATA_FILE)
        if os.path.isfile(metadata_path):
            with open(metadata_path, "r") as f:
                msp_id = json.load(f).get("mspid")

        return Identity(msp_id, certificate, private_key)
