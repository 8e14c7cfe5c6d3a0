"""
Cloud Storage Provider Manager.

Registers one cloud storage provider with Office (the "Add a Place" cloud
storage entries), makes its sync client start at logon, and optionally makes
its local folder Office's default save location. Entries the tool manages
for the other providers are removed so only the chosen one remains.
"""

import logging
import os
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from winadmin.services.dropbox_save_location import find_dropbox_folder
from winadmin.services.office_defaults import apply_settings, office_default_settings
from winadmin.services.results import OperationResult
from winadmin.services.user_profiles import UserContext, get_user_contexts
from winadmin.utils import default_registry

logger = logging.getLogger(__name__)

CLOUD_STORAGE_KEY = r"Software\Microsoft\Office\Common\Cloud Storage"
RUN_KEY = r"Software\Microsoft\Windows\CurrentVersion\Run"
NO_PROVIDER = "None"

# Namespace for the stable Cloud Storage entry ids of each provider
_STORAGE_ID_NAMESPACE = uuid.UUID("6f1c2a52-3b8e-4f5e-9a43-0d7c8e1b2a90")


@dataclass(frozen=True)
class CloudProvider:
    """A supported provider.

    Path templates may use {profile}, {local}, {pf} and {pf86}; templates
    whose placeholders cannot be filled for a user are ignored.
    """
    key: str
    display_name: str
    description: str
    run_value: str
    executables: Tuple[str, ...]
    folders: Tuple[str, ...]
    manage_url: str
    learn_more_url: str
    run_arguments: str = ""

    @property
    def storage_id(self) -> str:
        return "{" + str(uuid.uuid5(_STORAGE_ID_NAMESPACE, self.key)).upper() + "}"


PROVIDERS: Dict[str, CloudProvider] = {
    provider.key: provider
    for provider in (
        CloudProvider(
            key="OneDrive",
            display_name="OneDrive",
            description="Microsoft OneDrive",
            run_value="OneDrive",
            executables=(r"{local}\Microsoft\OneDrive\OneDrive.exe", r"{pf}\Microsoft OneDrive\OneDrive.exe"),
            folders=(r"{profile}\OneDrive",),
            manage_url="https://onedrive.live.com/",
            learn_more_url="https://www.microsoft.com/microsoft-365/onedrive/online-cloud-storage",
            run_arguments="/background",
        ),
        CloudProvider(
            key="Dropbox",
            display_name="Dropbox",
            description="Dropbox file storage",
            run_value="Dropbox",
            executables=(r"{pf}\Dropbox\Client\Dropbox.exe", r"{pf86}\Dropbox\Client\Dropbox.exe"),
            folders=(r"{profile}\Dropbox",),
            manage_url="https://www.dropbox.com/home",
            learn_more_url="https://www.dropbox.com/features",
            run_arguments="/systemstartup",
        ),
        CloudProvider(
            key="GoogleDrive",
            display_name="Google Drive",
            description="Google Drive for desktop",
            run_value="GoogleDriveFS",
            executables=(r"{pf}\Google\Drive File Stream\launch.bat",),
            folders=(r"G:\My Drive", r"{profile}\Google Drive"),
            manage_url="https://drive.google.com/",
            learn_more_url="https://www.google.com/drive/download/",
        ),
        CloudProvider(
            key="Box",
            display_name="Box",
            description="Box Drive",
            run_value="Box",
            executables=(r"{pf}\Box\Box\Box.exe",),
            folders=(r"{profile}\Box",),
            manage_url="https://app.box.com/",
            learn_more_url="https://www.box.com/resources/downloads",
        ),
        CloudProvider(
            key="ShareFile",
            display_name="ShareFile",
            description="Citrix ShareFile",
            run_value="CitrixFiles",
            executables=(r"{pf}\Citrix\Citrix Files\CitrixFiles.exe",),
            folders=(r"{profile}\ShareFile",),
            manage_url="https://secure.sharefile.com/",
            learn_more_url="https://www.sharefile.com/apps",
        ),
        CloudProvider(
            key="Egnyte",
            display_name="Egnyte",
            description="Egnyte Desktop App",
            run_value="EgnyteDesktopApp",
            executables=(r"{pf}\Egnyte Connect\EgnyteClient.exe", r"{pf86}\Egnyte Connect\EgnyteClient.exe"),
            folders=(r"{profile}\Egnyte", "Z:\\"),
            manage_url="https://www.egnyte.com/",
            learn_more_url="https://www.egnyte.com/file-server/desktop-app",
        ),
    )
}

PROVIDER_CHOICES = tuple(PROVIDERS) + (NO_PROVIDER,)


def _expand(template: str, user: UserContext) -> Optional[str]:
    values = {
        "profile": user.profile_path,
        "local": str(user.local_appdata) if user.local_appdata else None,
        "pf": os.environ.get("ProgramFiles"),
        "pf86": os.environ.get("ProgramFiles(x86)"),
    }
    try:
        return template.format(**{k: v for k, v in values.items() if v})
    except KeyError:
        return None


class CloudStorageManager:
    """Configure the cloud storage provider for every loaded user."""

    def __init__(
        self,
        registry=None,
        users: Optional[Callable[[], List[UserContext]]] = None,
        onedrive_remover=None,
        is_dir: Callable[[str], bool] = os.path.isdir,
        is_file: Callable[[str], bool] = os.path.isfile,
    ):
        self.registry = registry or default_registry()
        self._users = users or (lambda: get_user_contexts(self.registry))
        self._onedrive_remover = onedrive_remover
        self._is_dir = is_dir
        self._is_file = is_file

    @property
    def onedrive_remover(self):
        if self._onedrive_remover is None:
            from winadmin.services.onedrive_removal import OneDriveRemover
            self._onedrive_remover = OneDriveRemover(registry=self.registry, users=self._users)
        return self._onedrive_remover

    def find_folder(self, provider: CloudProvider, user: UserContext) -> Optional[str]:
        if provider.key == "Dropbox":
            folder = find_dropbox_folder(user.local_appdata)
            if folder and self._is_dir(folder):
                return folder
        for template in provider.folders:
            path = _expand(template, user)
            if path and self._is_dir(path):
                return path
        return None

    def find_executable(self, provider: CloudProvider, user: UserContext) -> Optional[str]:
        for template in provider.executables:
            path = _expand(template, user)
            if path and self._is_file(path):
                return path
        return None

    def configured_providers(self, user: UserContext) -> List[str]:
        """Keys of the managed providers that have an Office entry for this user."""
        present = set(self.registry.enumerate_subkeys(user.hive, user.key(CLOUD_STORAGE_KEY)))
        return [key for key, provider in PROVIDERS.items() if provider.storage_id in present]

    def _remove_provider(self, provider: CloudProvider, user: UserContext, result: OperationResult,
                         keep_run_value: bool) -> None:
        entry = f"{CLOUD_STORAGE_KEY}\\{provider.storage_id}"
        if self.registry.key_exists(user.hive, user.key(entry)):
            result.record(
                f"{user.label}: remove {provider.display_name} Office entry",
                self.registry.delete_key(user.hive, user.key(entry)),
            )
        if not keep_run_value and self.registry.read_value(user.hive, user.key(RUN_KEY), provider.run_value) is not None:
            result.record(
                f"{user.label}: remove {provider.display_name} startup entry",
                self.registry.delete_value(user.hive, user.key(RUN_KEY), provider.run_value),
            )

    def _add_provider(self, provider: CloudProvider, user: UserContext, result: OperationResult,
                      set_as_default: bool) -> None:
        folder = self.find_folder(provider, user)
        if folder is None:
            result.record(f"{user.label}: {provider.display_name} Office entry", False, "local folder not found")
        else:
            entry = user.key(f"{CLOUD_STORAGE_KEY}\\{provider.storage_id}")
            values = {
                "DisplayName": provider.display_name,
                "Description": provider.description,
                "LocalFolderRoot": folder,
                "ManageURL": provider.manage_url,
                "LearnMoreURL": provider.learn_more_url,
            }
            written = [
                self.registry.write_value(user.hive, entry, name, value, "REG_SZ")
                for name, value in values.items()
            ]
            result.record(f"{user.label}: {provider.display_name} Office entry", all(written), folder)

        executable = self.find_executable(provider, user)
        if executable is None:
            result.record(f"{user.label}: {provider.display_name} startup entry", False, "client not installed")
        else:
            command = f'"{executable}"' + (f" {provider.run_arguments}" if provider.run_arguments else "")
            result.record(
                f"{user.label}: {provider.display_name} startup entry",
                self.registry.write_value(user.hive, user.key(RUN_KEY), provider.run_value, command, "REG_SZ"),
                command,
            )

        if set_as_default and folder is not None:
            failed = apply_settings(self.registry, user, office_default_settings(folder))
            result.record(
                f"{user.label}: Office default save location",
                not failed,
                folder if not failed else "failed: " + ", ".join(s.name for s in failed),
            )

    def configure(self, provider: str, remove_onedrive: bool = False, set_as_default: bool = False) -> OperationResult:
        """Make provider the only managed cloud storage provider ("None" removes them all)."""
        if provider not in PROVIDER_CHOICES:
            raise ValueError(f"Unknown provider {provider!r}; choose from {', '.join(PROVIDER_CHOICES)}")
        if remove_onedrive and provider == "OneDrive":
            raise ValueError("Cannot select OneDrive and remove it at the same time")
        if set_as_default and provider == NO_PROVIDER:
            logger.warning("--set-as-default has no effect without a provider")
            set_as_default = False

        selected = PROVIDERS.get(provider)
        result = OperationResult()
        for user in self._users():
            logger.info("Configuring %s for %s", provider, user.label)
            try:
                for other in PROVIDERS.values():
                    if other is selected:
                        continue
                    # OneDrive ships with Windows; its autostart is only touched when removing it
                    keep_run = other.key == "OneDrive" and not remove_onedrive
                    self._remove_provider(other, user, result, keep_run_value=keep_run)
                if selected is not None:
                    self._add_provider(selected, user, result, set_as_default)
            except Exception as e:
                result.record(f"{user.label}: configure {provider}", False, str(e))

        if remove_onedrive:
            removal = self.onedrive_remover.remove()
            result.steps.extend(removal.steps)
        return result
