import logging
import tempfile
from pathlib import Path
from typing import List, Optional, Tuple

from mtasts_harvester.errors import MailStoreError

logger = logging.getLogger(__name__)


class OutlookMailStore:
    """Read attachments from a folder picked in the local Outlook profile"""

    def __init__(self, namespace=None):
        """
        Args:
            namespace: MAPI namespace object; created from the running
                Outlook application when omitted
        """
        self._namespace = namespace

    @property
    def namespace(self):
        if self._namespace is None:
            try:
                import win32com.client
            except ImportError:
                raise MailStoreError("Outlook access requires pywin32 on Windows")

            try:
                outlook = win32com.client.Dispatch("Outlook.Application")
                self._namespace = outlook.GetNamespace("MAPI")
            except Exception as e:
                raise MailStoreError(f"Failed to open Outlook: {str(e)}")
        return self._namespace

    def pick_folder(self):
        """Show Outlook's folder picker; None if the operator closed it"""
        return self.namespace.PickFolder()

    def get_attachments(self, folder) -> List[Tuple[str, bytes]]:
        """
        Extract attachments from every item in a folder

        Args:
            folder: Outlook MAPIFolder

        Returns:
            List of tuples (filename, data)
        """
        attachments = []

        with tempfile.TemporaryDirectory(prefix="mtasts-outlook-") as scratch:
            items = folder.Items
            for index in range(1, items.Count + 1):
                item = items.Item(index)
                item_attachments = getattr(item, "Attachments", None)
                if item_attachments is None:
                    continue

                for att_index in range(1, item_attachments.Count + 1):
                    attachment = item_attachments.Item(att_index)
                    filename = attachment.FileName
                    temp_path = Path(scratch) / f"{index}-{att_index}"
                    attachment.SaveAsFile(str(temp_path))
                    attachments.append((filename, temp_path.read_bytes()))

        logger.info(f"Read {len(attachments)} attachments from Outlook folder {folder.Name}")
        return attachments

    def select_folder_attachments(self) -> Optional[List[Tuple[str, bytes]]]:
        folder = self.pick_folder()
        if folder is None:
            return None
        return self.get_attachments(folder)
