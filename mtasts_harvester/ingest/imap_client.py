import imaplib
import email
import re
from email.message import Message
from typing import Callable, List, Tuple, Optional
import logging

from mtasts_harvester.errors import MailStoreError

logger = logging.getLogger(__name__)

FolderChooser = Callable[[List[str]], Optional[str]]

_LIST_RESPONSE = re.compile(r'\((?P<flags>[^)]*)\) (?P<delimiter>"[^"]*"|NIL) (?P<name>.+)')


def console_folder_chooser(folders: List[str]) -> Optional[str]:
    """Numbered console prompt; a blank answer cancels"""
    for number, name in enumerate(folders, 1):
        print(f"{number:>3}. {name}")

    while True:
        try:
            answer = input("Select folder number (blank to cancel): ").strip()
        except EOFError:
            return None

        if not answer:
            return None
        if answer.isdigit() and 1 <= int(answer) <= len(folders):
            return folders[int(answer) - 1]
        print(f"Enter a number between 1 and {len(folders)}")


class IMAPClient:
    """IMAP email client for fetching TLS-RPT report attachments"""

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        use_ssl: bool = True,
        chooser: FolderChooser = console_folder_chooser,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_ssl = use_ssl
        self.chooser = chooser
        self.connection: Optional[imaplib.IMAP4] = None

    def connect(self):
        """Connect to IMAP server and login"""
        if not self.host or not self.user or not self.password:
            raise MailStoreError("Email credentials not configured")

        try:
            if self.use_ssl:
                self.connection = imaplib.IMAP4_SSL(self.host, self.port)
            else:
                self.connection = imaplib.IMAP4(self.host, self.port)

            self.connection.login(self.user, self.password)
            logger.info(f"Connected to IMAP server: {self.host}")

        except (imaplib.IMAP4.error, OSError) as e:
            logger.error("Failed to connect to IMAP server", exc_info=True)
            raise MailStoreError(f"Failed to connect to email server: {str(e)}")

    def disconnect(self):
        """Disconnect from IMAP server"""
        if self.connection:
            try:
                self.connection.logout()
                logger.info("Disconnected from IMAP server")
            except (imaplib.IMAP4.error, OSError) as e:
                logger.debug("IMAP logout error: %s", e)
            self.connection = None

    def list_folders(self) -> List[str]:
        """List selectable mailbox folder names"""
        if not self.connection:
            raise RuntimeError("Not connected to email server")

        status, data = self.connection.list()
        if status != 'OK':
            raise MailStoreError(f"Failed to list folders: {status}")

        folders = []
        for line in data:
            if not line:
                continue
            if isinstance(line, bytes):
                line = line.decode('utf-8', errors='replace')
            match = _LIST_RESPONSE.match(line)
            if not match:
                continue
            if '\\Noselect' in match.group('flags'):
                continue
            folders.append(match.group('name').strip('"'))

        return folders

    def search_messages(self, criteria: str = 'ALL') -> List[bytes]:
        """
        Search the selected folder

        Args:
            criteria: IMAP search criteria

        Returns:
            List of message sequence numbers
        """
        if not self.connection:
            raise RuntimeError("Not connected to email server")

        status, messages = self.connection.search(None, criteria)
        if status != 'OK':
            logger.warning(f"Search returned status: {status}")
            return []

        return messages[0].split()

    def fetch_message(self, message_id: bytes) -> Message:
        """Fetch email message by sequence number"""
        if not self.connection:
            raise RuntimeError("Not connected to email server")

        status, data = self.connection.fetch(message_id, '(RFC822)')
        if status != 'OK':
            raise MailStoreError(f"Failed to fetch message {message_id!r}")

        return email.message_from_bytes(data[0][1])

    def get_attachments(self, msg: Message) -> List[Tuple[str, bytes]]:
        """
        Extract attachments from email message

        Args:
            msg: Email message

        Returns:
            List of tuples (filename, content)
        """
        attachments = []

        for part in msg.walk():
            # Skip multipart containers
            if part.get_content_maintype() == 'multipart':
                continue

            filename = part.get_filename()
            if not filename:
                continue

            content = part.get_payload(decode=True)
            if not content:
                continue

            attachments.append((filename, content))

        return attachments

    def select_folder_attachments(self) -> Optional[List[Tuple[str, bytes]]]:
        """Let the operator choose a folder and return all of its attachments"""
        with self:
            folders = self.list_folders()
            folder = self.chooser(folders)
            if folder is None:
                return None

            status, _ = self.connection.select(f'"{folder}"', readonly=True)
            if status != 'OK':
                raise MailStoreError(f"Failed to open folder {folder}")

            attachments = []
            for message_id in self.search_messages():
                attachments.extend(self.get_attachments(self.fetch_message(message_id)))

            logger.info(f"Read {len(attachments)} attachments from IMAP folder {folder}")
            return attachments

    def __enter__(self):
        """Context manager entry"""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.disconnect()
