import logging
from pathlib import Path
from typing import List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

Attachment = Tuple[str, bytes]


class MailStore(Protocol):
    """Source of report attachments"""

    def select_folder_attachments(self) -> Optional[List[Attachment]]:
        """
        Let the operator pick a folder and return its attachments

        Returns:
            List of (filename, data) tuples, or None if the operator cancelled
        """
        ...


class AttachmentCollector:
    """Save the attachments of an operator-selected folder into the working folder"""

    def __init__(self, mail_store: MailStore):
        self.mail_store = mail_store

    def collect(self, working_dir: Path) -> Optional[List[Path]]:
        """
        Collect attachments into working_dir

        Returns:
            Paths of the saved files, or None if no folder was selected
        """
        attachments = self.mail_store.select_folder_attachments()
        if attachments is None:
            logger.warning("No mail folder selected")
            return None

        saved = []
        for filename, data in attachments:
            # Attachment names come from remote senders; keep only the final component
            safe_name = Path(filename.replace("\\", "/")).name
            if not safe_name or safe_name in (".", ".."):
                logger.warning(f"Skipping attachment with unusable name: {filename!r}")
                continue

            target = Path(working_dir) / safe_name
            if target.is_file():
                logger.warning(
                    f"Attachment {safe_name} overwrites an existing file of the same name",
                    extra={"file_name": safe_name, "stage": "collect"}
                )

            try:
                with open(target, 'wb') as f:
                    f.write(data)
            except OSError as e:
                logger.error(
                    f"Failed to save attachment {safe_name}: {e}",
                    extra={"file_name": safe_name, "stage": "collect"}
                )
                continue

            logger.debug(f"Saved attachment: {safe_name}", extra={"file_name": safe_name, "stage": "collect"})
            saved.append(target)

        logger.info(f"Collected {len(saved)} attachments into {working_dir}")
        return saved
