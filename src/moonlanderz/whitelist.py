import json
from pathlib import Path
from typing import Iterable, List, Optional, Union

from loguru import logger

from moonlanderz.errors import StorageReadError, StorageWriteError
from moonlanderz.merkle import LeafKind, MerkleTree, WhitelistEntry


class WhitelistStore:
    """Durable backing of one whitelist.

    ``load`` returns the raw JSON-compatible list, ``save`` replaces it
    wholesale. Stores assume a single writer: two processes doing
    load-modify-save concurrently will lose updates.
    """

    def load(self) -> list:
        raise NotImplementedError

    def save(self, data: list) -> None:
        raise NotImplementedError


class JsonFileStore(WhitelistStore):
    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def load(self) -> list:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise StorageReadError(f"Failed to read {self.path}: {e}") from e

    def save(self, data: list) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f)
        except (OSError, TypeError) as e:
            raise StorageWriteError(f"Failed to write {self.path}: {e}") from e


class MemoryStore(WhitelistStore):
    def __init__(self, initial: Optional[list] = None) -> None:
        self.data = json.dumps(initial) if initial is not None else None

    def load(self) -> list:
        if self.data is None:
            raise StorageReadError("Memory store is empty")
        return json.loads(self.data)

    def save(self, data: list) -> None:
        try:
            self.data = json.dumps(data)
        except TypeError as e:
            raise StorageWriteError(f"Failed to serialize whitelist: {e}") from e


class Whitelist:
    def __init__(self, store: WhitelistStore, kind: LeafKind = LeafKind.SIMPLE) -> None:
        self.store = store
        self.kind = kind

    def _decode(self, raw) -> List[WhitelistEntry]:
        if not isinstance(raw, list):
            raise ValueError(f"Expected a JSON array, got {type(raw).__name__}")

        if self.kind is LeafKind.SIMPLE:
            return [WhitelistEntry(address) for address in raw]

        # a null amount is as malformed as a missing one
        return [self._entry(item["address"], item["amount"]) for item in raw]

    def _encode(self, entries: Iterable[WhitelistEntry]) -> list:
        if self.kind is LeafKind.SIMPLE:
            return [entry.address for entry in entries]

        return [{"address": entry.address, "amount": entry.allowance} for entry in entries]

    def _entry(self, item: Union[str, WhitelistEntry], allowance: Optional[int] = None) -> WhitelistEntry:
        entry = item if isinstance(item, WhitelistEntry) else WhitelistEntry(item, allowance)

        if self.kind is LeafKind.ALLOWANCE and entry.allowance is None:
            raise ValueError(f"Allowance whitelist entry {entry.address} needs an amount")
        if self.kind is LeafKind.SIMPLE and entry.allowance is not None:
            entry = WhitelistEntry(entry.address)

        return entry

    def load_snapshot(self) -> List[WhitelistEntry]:
        try:
            return self._decode(self.store.load())
        except StorageReadError as e:
            logger.warning(f"Whitelist unavailable, using an empty one: {e}")
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"Whitelist is malformed, using an empty one: {e}")

        return []

    def save_snapshot(self, entries: Iterable[WhitelistEntry]) -> None:
        self.store.save(self._encode(entries))

    def append(self, item: Union[str, WhitelistEntry], allowance: Optional[int] = None) -> None:
        entry = self._entry(item, allowance)
        whitelist = self.load_snapshot()

        if any(elt.address == entry.address for elt in whitelist):
            return

        whitelist.append(entry)

        self.save_snapshot(whitelist)

    def append_many(self, items: Iterable[Union[str, WhitelistEntry]]) -> None:
        """Append every entry whose address is absent from the snapshot taken at call start.

        Entries of the batch are not checked against each other.
        """

        whitelist = self.load_snapshot()
        present = {elt.address for elt in whitelist}

        for item in items:
            entry = self._entry(item)
            if entry.address not in present:
                whitelist.append(entry)

        self.save_snapshot(whitelist)

    def remove(self, address: str) -> None:
        target = WhitelistEntry(address).address
        whitelist = self.load_snapshot()
        updated = [elt for elt in whitelist if elt.address != target]

        self.save_snapshot(updated)

    def find(self, address: str) -> Optional[WhitelistEntry]:
        target = WhitelistEntry(address).address
        for entry in self.load_snapshot():
            if entry.address == target:
                return entry
        return None

    def build_tree(self, snapshot: Optional[Iterable[WhitelistEntry]] = None) -> MerkleTree:
        if snapshot is None:
            snapshot = self.load_snapshot()
        return MerkleTree.from_entries(snapshot, self.kind)
