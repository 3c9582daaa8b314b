import logging
import re
from typing import Any, List, Optional, Union

from rich.console import Console

from portainer_lxc.exceptions import TemplateError
from portainer_lxc.tasks import ThreadTask, track

logger = logging.getLogger(__name__)


def version_key(name: str) -> List[Union[str, int]]:
    """Natural sort key: digit runs compare numerically, like ``sort -V``."""
    parts = re.split(r"(\d+)", name)
    # re.split with a capture group keeps digits at odd indices
    return [int(part) if index % 2 else part for index, part in enumerate(parts)]


class TemplateResolver:
    """Makes sure the newest matching OS template is cached on the host."""

    def __init__(self, client: Any, console: Optional[Console] = None) -> None:
        self.client = client
        self.console = console or Console()

    def refresh_catalog(self) -> bool:
        """Run ``pveam update`` in the background; a stale catalog is not fatal."""
        task = ThreadTask(self.client.refresh_templates, description="Updating template list")
        try:
            result = track(task, self.console)
        except Exception as e:
            logger.warning(f"Template catalog refresh failed: {e}")
            return False
        if not result.ok:
            logger.warning(f"Template catalog refresh failed: {result.stderr or result.stdout}")
            return False
        return True

    def list_matching(self, name_filter: str) -> List[str]:
        """Catalog templates whose name contains the filter, newest first."""
        needle = name_filter.lower()
        names = {
            entry["template"]
            for entry in self.client.available_templates()
            if needle in str(entry.get("template", "")).lower()
        }
        return sorted(names, key=version_key, reverse=True)

    def find_latest(self, name_filter: str) -> str:
        matches = self.list_matching(name_filter)
        if not matches:
            raise TemplateError(f"No template matching {name_filter!r} in the appliance catalog")
        return matches[0]

    def is_cached(self, storage: str, template: str) -> bool:
        volid = f"{storage}:vztmpl/{template}"
        return any(item.get("volid") == volid for item in self.client.storage_content(storage, "vztmpl"))

    def ensure_downloaded(self, storage: str, template: str) -> str:
        """Download the template unless cached; returns its volume id."""
        volid = f"{storage}:vztmpl/{template}"
        if self.is_cached(storage, template):
            logger.info(f"Template {template} already present on {storage}, skipping download")
            return volid

        logger.info(f"Downloading {template} to {storage}")
        upid = self.client.download_template(storage, template)
        task = self.client.task(upid, f"Downloading {template}", error_cls=TemplateError)
        track(task, self.console)
        return volid

    def resolve(self, storage: str, name_filter: str = "alpine") -> str:
        """Refresh, select the newest matching template and make it available."""
        self.refresh_catalog()
        template = self.find_latest(name_filter)
        logger.info(f"Selected template {template}")
        return self.ensure_downloaded(storage, template)
