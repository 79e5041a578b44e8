"""Folder classifier: provider folder names to canonical folder types."""

from __future__ import annotations

import re

from mailsync.domain.enums import FolderType

# Aliases are compared lower-cased. Order matters only for names listed under
# more than one type ("outgoing"): the first type wins.
FOLDER_ALIASES: dict[FolderType, tuple[str, ...]] = {
    FolderType.INBOX: (
        "inbox",
        "bandeja de entrada",
        "entrada",
        "boîte de réception",
        "réception",
        "posteingang",
        "eingang",
        "posta in arrivo",
        "arrivo",
        "caixa de entrada",
        "postvak in",
        "входящие",
        "受信トレイ",
        "受信箱",
        "收件箱",
        "收件匣",
        "받은 편지함",
        "صندوق الوارد",
    ),
    FolderType.SENT: (
        "sent",
        "sent items",
        "sent mail",
        "sent messages",
        "sent folder",
        "sentitems",
        "sent email",
        "outgoing",
        "enviados",
        "elementos enviados",
        "correo enviado",
        "envoyés",
        "éléments envoyés",
        "messages envoyés",
        "gesendete elemente",
        "gesendet",
        "posta inviata",
        "inviati",
        "elementi inviati",
        "itens enviados",
        "enviadas",
        "verzonden items",
        "verzonden",
        "отправленные",
        "送信済みアイテム",
        "送信済み",
        "已发送邮件",
        "寄件備份",
        "已发送",
        "寄件匣",
        "보낸 편지함",
        "العناصر المرسلة",
        "البريد المرسل",
        "[gmail]/sent mail",
        "inbox.sent",
    ),
    FolderType.DRAFTS: (
        "drafts",
        "draft",
        "draft messages",
        "borradores",
        "brouillons",
        "entwürfe",
        "bozze",
        "rascunhos",
        "concepten",
        "черновики",
        "下書き",
        "草稿",
        "草稿匣",
        "임시 보관함",
        "المسودات",
        "[gmail]/drafts",
        "inbox.drafts",
    ),
    FolderType.TRASH: (
        "trash",
        "deleted items",
        "deleted",
        "bin",
        "recycle bin",
        "deleted messages",
        "deleted emails",
        "deleteditems",
        "rubbish",
        "papelera",
        "elementos eliminados",
        "eliminados",
        "corbeille",
        "éléments supprimés",
        "supprimés",
        "gelöschte elemente",
        "papierkorb",
        "gelöscht",
        "posta eliminata",
        "cestino",
        "eliminati",
        "itens excluídos",
        "lixeira",
        "excluídos",
        "verwijderde items",
        "prullenbak",
        "удаленные",
        "корзина",
        "削除済みアイテム",
        "ごみ箱",
        "已删除邮件",
        "垃圾桶",
        "已删除",
        "刪除的郵件",
        "지운 편지함",
        "휴지통",
        "العناصر المحذوفة",
        "سلة المحذوفات",
        "[gmail]/trash",
        "inbox.trash",
    ),
    FolderType.SPAM: (
        "spam",
        "junk",
        "junk email",
        "junk e-mail",
        "junk mail",
        "bulk mail",
        "junkemail",
        "quarantine",
        "correo no deseado",
        "no deseado",
        "courrier indésirable",
        "indésirables",
        "junk-e-mail",
        "posta indesiderata",
        "lixo eletrônico",
        "ongewenste e-mail",
        "спам",
        "нежелательная почта",
        "迷惑メール",
        "垃圾邮件",
        "垃圾郵件",
        "정크 메일",
        "البريد العشوائي",
        "[gmail]/spam",
        "inbox.junk",
        "inbox.spam",
    ),
    FolderType.ARCHIVE: (
        "archive",
        "archives",
        "archived",
        "all mail",
        "[gmail]/all mail",
        "inbox.all mail",
        "archiv",
        "archivo",
        "archivio",
        "arquivo",
        "archief",
        "архив",
        "アーカイブ",
        "存档",
        "보관",
    ),
    FolderType.OUTBOX: (
        "outbox",
        "out box",
        "to send",
        "sending",
        "enviando",
        "bandeja de salida",
        "boîte d'envoi",
        "postausgang",
        "posta in uscita",
        "caixa de saída",
        "postvak uit",
        "исходящие",
        "送信トレイ",
        "发件箱",
        "보낼 편지함",
        "صندوق الصادر",
    ),
}

_PATH_SEPARATORS = re.compile(r"[/.]")
_NOT_SYNCED_BY_DEFAULT = frozenset({FolderType.TRASH, FolderType.SPAM})


def _build_lookup() -> dict[str, FolderType]:
    lookup: dict[str, FolderType] = {}
    for folder_type, aliases in FOLDER_ALIASES.items():
        for alias in aliases:
            lookup.setdefault(alias.casefold(), folder_type)
    return lookup


class FolderClassifier:
    """Maps provider folder names (and provider role hints) to FolderType.

    Matching is exact and case-insensitive against the alias table, then
    against the last segment of a hierarchical name ("INBOX.Sent",
    "[Gmail]/Sent Mail"). Anything else is custom; there is no fuzzy
    matching, so "Project X" stays custom.
    """

    def __init__(self, aliases: dict[FolderType, tuple[str, ...]] | None = None) -> None:
        if aliases is None:
            self._lookup = _build_lookup()
        else:
            self._lookup = {
                alias.casefold(): folder_type
                for folder_type, values in aliases.items()
                for alias in values
            }

    def classify(self, folder_name: str | None, type_hint: str | None = None) -> FolderType:
        """Canonical type for a folder.

        type_hint is the provider's declared role (Graph wellKnownName, Gmail
        system label id, IMAP special-use flag, aggregator folder type); it
        wins when it maps to a non-custom type.
        """
        if type_hint:
            hinted = self._match(type_hint)
            if hinted is not FolderType.CUSTOM:
                return hinted
        if not folder_name:
            return FolderType.CUSTOM
        return self._match(folder_name)

    def _match(self, name: str) -> FolderType:
        normalized = name.strip().casefold()
        if normalized in self._lookup:
            return self._lookup[normalized]
        segments = [s for s in _PATH_SEPARATORS.split(normalized) if s.strip()]
        if segments:
            return self._lookup.get(segments[-1].strip(), FolderType.CUSTOM)
        return FolderType.CUSTOM

    @staticmethod
    def should_sync_by_default(folder_type: FolderType) -> bool:
        """Trash and spam are not synced unless the user enables them."""
        return folder_type not in _NOT_SYNCED_BY_DEFAULT

    @staticmethod
    def is_system_folder(folder_type: FolderType) -> bool:
        return folder_type is not FolderType.CUSTOM


_default_classifier = FolderClassifier()


def classify(folder_name: str | None, type_hint: str | None = None) -> FolderType:
    """Classify with the built-in alias table."""
    return _default_classifier.classify(folder_name, type_hint)


def should_sync_by_default(folder_type: FolderType) -> bool:
    return FolderClassifier.should_sync_by_default(folder_type)


def is_system_folder(folder_type: FolderType) -> bool:
    return FolderClassifier.is_system_folder(folder_type)
