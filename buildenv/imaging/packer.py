import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from buildenv.errors import ImageBuildError, ValidationError
from buildenv.util.cmd import CMD
from buildenv.util.external_dependency import ExternalDependency

logger = logging.getLogger(__name__)

# Build variables whose values must never reach the logs.
SECRET_VARIABLES = ("azure_client_secret", "install_password")


class Packer:
    """
    Thin driver for the Packer image builder.

    A template is built with `-var name=value` pairs; the template's manifest
    post-processor writes `packer_manifest`, from which the image location is read.
    """

    @staticmethod
    def build_variables(
            *,
            subscription_id: str,
            tenant_id: str,
            client_id: str,
            client_secret: str,
            location: str,
            resource_group: str,
            storage_account: str,
            vm_size: str,
            install_user: str,
            install_password: str,
            image_name: str,
            manifest: Path,
    ) -> Dict[str, str]:
        datemark = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        return {
            "azure_subscription_id": subscription_id,
            "azure_tenant_id": tenant_id,
            "azure_client_id": client_id,
            "azure_client_secret": client_secret,
            "azure_location": location,
            "azure_resource_group_name": resource_group,
            "azure_storage_account": storage_account,
            "azure_vm_size": vm_size,
            "install_user": install_user,
            "install_password": install_password,
            "image_description": f"{image_name} built {datemark}",
            "datemark": datemark,
            "packer_manifest": str(manifest),
        }

    @staticmethod
    def command(template: Path, variables: Dict[str, str]) -> List[str]:
        cmd = ["packer", "build", "-force"]
        for key in sorted(variables):
            cmd += ["-var", f"{key}={variables[key]}"]
        cmd.append(str(template))
        return cmd

    @staticmethod
    def read_manifest(path: Path) -> str:
        """
        Image location from a Packer manifest: the last build of the last run,
        `custom_data.OSDiskUri` when present, otherwise `artifact_id`.

        Raises:
            ImageBuildError: If the manifest is missing, malformed or has no builds.
        """
        path = Path(path)
        try:
            manifest = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise ImageBuildError(f"Packer manifest not found: {path}")
        except json.JSONDecodeError as e:
            raise ImageBuildError(f"Packer manifest {path} is not valid JSON: {e}")

        builds = manifest.get("builds") or []
        run_uuid = manifest.get("last_run_uuid")
        if run_uuid:
            builds = [b for b in builds if b.get("packer_run_uuid") == run_uuid] or builds
        if not builds:
            raise ImageBuildError(f"Packer manifest {path} lists no builds")

        build = builds[-1]
        location = (build.get("custom_data") or {}).get("OSDiskUri") or build.get("artifact_id")
        if not location:
            raise ImageBuildError(f"Packer manifest {path} has no image location for build '{build.get('name')}'")
        return location

    @staticmethod
    def build(template: Path, variables: Dict[str, str], manifest: Path) -> str:
        """
        Run `packer build` for `template` and return the resulting image location.
        """
        template = Path(template)
        if not template.is_file():
            raise ImageBuildError(f"Packer template not found: {template}")

        packer = ExternalDependency.path("packer")
        secrets = [variables[k] for k in SECRET_VARIABLES if variables.get(k)]
        workdir = template.parent

        if template.name.endswith(".pkr.hcl"):
            init = CMD.run([packer, "init", template.name], cwd=workdir)
            if init.returncode != 0:
                raise ImageBuildError(f"packer init failed: {(init.stderr or init.stdout or '').strip()}")

        cmd = Packer.command(Path(template.name), variables)
        logger.info(f"[Packer] Building image from {template} (this can take an hour or more)")
        completed = CMD.run([packer] + cmd[1:], cwd=workdir, capture_output=False, redact=secrets)
        if completed.returncode != 0:
            raise ImageBuildError(f"packer build exited with code {completed.returncode}")

        manifest = Path(manifest)
        if not manifest.is_absolute():
            manifest = workdir / manifest
        location = Packer.read_manifest(manifest)
        logger.info(f"[Packer] Image ready: {location}")
        return location


class ImageSource:
    """
    Where the build worker image comes from: an existing reference or a Packer build.
    """

    @staticmethod
    def check(image: Dict[str, Any]) -> None:
        """
        Validate image settings before anything is provisioned.
        """
        if image.get("uri"):
            return
        template = image.get("template")
        if not template:
            raise ValidationError("Either image.uri (existing image) or image.template (Packer) is required.")
        if not Path(template).is_file():
            raise ValidationError(f"Packer template not found: {template}")
        if not image.get("install_password"):
            raise ValidationError("image.install_password is required to build an image.")
        ExternalDependency.ensure("packer")

    @staticmethod
    def resolve(image: Dict[str, Any], variables: Optional[Dict[str, str]] = None) -> str:
        """
        Return the image location: image.uri as given, else the result of a Packer build.
        """
        if image.get("uri"):
            logger.info(f"[ImageSource] Using existing image {image['uri']}")
            return image["uri"]
        if variables is None:
            raise ImageBuildError("Packer build variables are required to build an image.")
        return Packer.build(Path(image["template"]), variables, Path(image.get("manifest") or "packer-manifest.json"))
