import os
import json
import logging

import yaml

from compliance.common.errors import TemplateRenderError


logger = logging.getLogger(__name__)


TEMPLATE_SECTIONS = ["client-base", "peer-base", "orderer-base", "ca-base"]


class ConnectionProfileGenerator:
    """Writes the connection profile of an organisation once per network
    instance. The template is a YAML document with one section per kind
    of entry (client-base, peer-base, orderer-base, ca-base); its string
    values carry `{field}` placeholders filled from the organisation,
    the component being rendered and the crypto material root.
    """

    def __init__(self, template_path, crypto_config_path, default_orderer):
        self.template_path = template_path
        self.crypto_config_path = crypto_config_path
        self.default_orderer = default_orderer
        self._template = None

    def _load_template(self):
        if self._template is not None:
            return self._template

        with open(self.template_path, "r") as f:
            raw = f.read()

        try:
            template = yaml.load(raw, Loader=yaml.SafeLoader)
        except yaml.YAMLError as e:
            raise TemplateRenderError(
                f"Template {self.template_path} malformed: {e}"
            ) from e

        if not isinstance(template, dict):
            raise TemplateRenderError(f"Template {self.template_path} is not a mapping")

        missing = [section for section in TEMPLATE_SECTIONS if section not in template]
        if missing:
            raise TemplateRenderError(
                f"Template {self.template_path} misses sections {missing}"
            )

        if not isinstance(template["client-base"], dict):
            raise TemplateRenderError(
                f"Template {self.template_path} client-base is not a mapping"
            )

        self._template = template
        return template

    def _format_fields(self, data, info):
        if isinstance(data, str):
            return data.format(**info)
        if isinstance(data, list):
            return [self._format_fields(item, info) for item in data]
        if isinstance(data, dict):
            return {
                self._format_fields(key, info): self._format_fields(value, info)
                for key, value in data.items()
            }
        return data

    def _component_info(self, org_info, component):
        info = dict(org_info)
        info.update(
            {
                "name": component.name,
                "port": component.port,
                "external_port": component.external_port,
            }
        )
        for attrib in ["external_event_port", "event_port", "trusted_root_cert"]:
            if hasattr(component, attrib):
                info[attrib] = getattr(component, attrib)
        if hasattr(component, "domain"):
            info["domain"] = component.domain
        return info

    def render(self, org):
        template = self._load_template()

        org_info = {
            "org_name": org.name,
            "msp_id": org.msp_id,
            "crypto_config_path": self.crypto_config_path,
        }

        try:
            profile = self._format_fields(template["client-base"], org_info)

            peers = {}
            for peer in org.peers:
                info = self._component_info(org_info, peer)
                peers[peer.name] = self._format_fields(template["peer-base"], info)

            orderers = {}
            for orderer in [self.default_orderer]:
                info = self._component_info(org_info, orderer)
                orderers[orderer.name] = self._format_fields(
                    template["orderer-base"], info
                )

            cas = {}
            for ca in org.cas:
                info = self._component_info(org_info, ca)
                cas[ca.name] = self._format_fields(template["ca-base"], info)

        except (KeyError, IndexError, ValueError, AttributeError) as e:
            raise TemplateRenderError(
                f"Template {self.template_path} could not be rendered for org "
                f"{org.name}: {repr(e)}"
            ) from e

        profile["organizations"] = {
            org.name: {
                "mspid": org.msp_id,
                "peers": list(peers),
                "certificateAuthorities": list(cas),
            }
        }
        profile["peers"] = peers
        profile["orderers"] = orderers
        profile["certificateAuthorities"] = cas
        return profile

    def writefile_json(self, data, filename):
        os.makedirs(os.path.dirname(filename), exist_ok=True)
        with open(filename, "w") as outfile:
            json.dump(data, outfile, indent=4, sort_keys=True)
            return True

    def ensure(self, org):
        filepath = org.connection_profile

        if os.path.exists(filepath):
            logger.debug("Connection profile for org %s already exists", org.name)
            return filepath

        profile = self.render(org)

        logger.info("Saving connection profile for org %s at %s", org.name, filepath)
        self.writefile_json(profile, filepath)
        return filepath
