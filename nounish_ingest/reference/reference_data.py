"""
In-memory reference data built from the CSV snapshots.

Three files live under the data directory:

    profiles.csv          fid,fname,verified_addresses   (addresses pipe-joined)
    grants.csv            id,recipient,description,parentContract
    nounish-citizens.csv  fid,fname,channel_id

The cache itself never touches the network or the database; missing files
are produced by the snapshot exporter before loading.
"""

from pathlib import Path

import pyarrow as pa
import pyarrow.csv as pacsv
from pydantic import BaseModel, Field

from nounish_ingest.core.errors import ReferenceDataError
from nounish_ingest.core.models import Grant
from nounish_ingest.observability.logger import get_logger

logger = get_logger(__name__)

PROFILES_FILE = "profiles.csv"
GRANTS_FILE = "grants.csv"
CITIZENS_FILE = "nounish-citizens.csv"

SNAPSHOT_FILES = (PROFILES_FILE, GRANTS_FILE, CITIZENS_FILE)

PROFILE_COLUMNS = ["fid", "fname", "verified_addresses"]
GRANT_COLUMNS = ["id", "recipient", "description", "parentContract"]
CITIZEN_COLUMNS = ["fid", "fname", "channel_id"]


class ReferenceData(BaseModel):
    """
    Lookup tables used during enrichment.

    Attributes:
        fid_to_fname: Handle per fid (only fids with a non-empty fname)
        fid_to_addresses: Verified addresses per fid
        address_to_fid: Inverse of fid_to_addresses, lower-cased keys
        cohort_fids: Fids belonging to the cohort channels
        grants: All known grants
    """

    fid_to_fname: dict[int, str] = Field(default_factory=dict)
    fid_to_addresses: dict[int, list[str]] = Field(default_factory=dict)
    address_to_fid: dict[str, int] = Field(default_factory=dict)
    cohort_fids: set[int] = Field(default_factory=set)
    grants: list[Grant] = Field(default_factory=list)

    @classmethod
    def build(
        cls,
        profiles: dict[int, tuple[str, list[str]]],
        grants: list[Grant] | None = None,
        cohort_fids: set[int] | None = None,
    ) -> "ReferenceData":
        """
        Build lookups from decoded profile rows.

        Args:
            profiles: fid -> (fname, verified addresses)
            grants: Grant list
            cohort_fids: Cohort member fids
        """
        fid_to_fname: dict[int, str] = {}
        fid_to_addresses: dict[int, list[str]] = {}
        address_to_fid: dict[str, int] = {}
        for fid, (fname, addresses) in profiles.items():
            if fname:
                fid_to_fname[fid] = fname
            fid_to_addresses[fid] = list(addresses)
            for address in addresses:
                # Last writer wins for addresses verified by several fids
                address_to_fid[address.lower()] = fid

        return cls(
            fid_to_fname=fid_to_fname,
            fid_to_addresses=fid_to_addresses,
            address_to_fid=address_to_fid,
            cohort_fids=set(cohort_fids or ()),
            grants=list(grants or ()),
        )

    def fname(self, fid: int) -> str | None:
        return self.fid_to_fname.get(int(fid))

    def addresses(self, fid: int) -> list[str]:
        return self.fid_to_addresses.get(int(fid), [])

    def fid_for_address(self, address: str) -> int | None:
        return self.address_to_fid.get(address.lower())

    def is_cohort_member(self, fid: int) -> bool:
        return int(fid) in self.cohort_fids

    def grants_for_addresses(self, addresses: list[str]) -> list[Grant]:
        """Grants whose recipient equals any of the addresses, in grant order."""
        wanted = {a.lower() for a in addresses if a}
        if not wanted:
            return []
        return [g for g in self.grants if g.recipient and g.recipient.lower() in wanted]

    def parent_grant(self, grant: Grant) -> Grant | None:
        """The grant whose recipient is this grant's parent contract."""
        if not grant.parent_contract:
            return None
        for candidate in self.grants:
            if candidate.is_recipient(grant.parent_contract):
                return candidate
        return None


def read_snapshot(path: Path, columns: list[str]) -> list[dict]:
    """
    Decode a snapshot CSV into row dicts of strings.

    Empty fields decode as empty strings; rows with the wrong number of
    fields are skipped.

    Raises:
        ReferenceDataError: If the file is missing or cannot be decoded
    """
    if not path.exists():
        raise ReferenceDataError(f"Snapshot file not found: {path}")

    skipped = 0

    def _skip_invalid(row) -> str:
        nonlocal skipped
        skipped += 1
        return "skip"

    try:
        table = pacsv.read_csv(
            path,
            parse_options=pacsv.ParseOptions(invalid_row_handler=_skip_invalid),
            convert_options=pacsv.ConvertOptions(
                column_types={c: pa.string() for c in columns},
                strings_can_be_null=False,
                include_columns=columns,
                include_missing_columns=True,
            ),
        )
    except (pa.ArrowInvalid, OSError) as e:
        raise ReferenceDataError(f"Could not read snapshot {path}: {e}") from e

    if skipped:
        logger.warning(
            f"Skipped {skipped} malformed rows in {path.name}",
            extra={"file": str(path), "skipped_rows": skipped},
        )
    # Columns filled in by include_missing_columns come back as nulls
    return [{c: (row.get(c) or "") for c in columns} for row in table.to_pylist()]


def _parse_fid(value: str, source: str) -> int | None:
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric fid {value!r} in {source}", extra={"file": source})
        return None


def split_addresses(raw: str) -> list[str]:
    """Split a pipe-joined address list, dropping quotes and empty entries."""
    addresses = []
    for part in raw.split("|"):
        address = part.replace('"', "").strip()
        if address:
            addresses.append(address)
    return addresses


class ReferenceDataLoader:
    """
    Reads the snapshot directory into a ReferenceData value.

    Example:
        >>> loader = ReferenceDataLoader("data", exporter=exporter)
        >>> reference = loader.ensure_available().load()
    """

    def __init__(self, data_dir: str | Path, exporter=None):
        """
        Args:
            data_dir: Directory holding the snapshot CSVs
            exporter: Optional SnapshotExporter used to create missing files
        """
        self.data_dir = Path(data_dir)
        self.exporter = exporter

    def missing_files(self) -> list[str]:
        return [name for name in SNAPSHOT_FILES if not (self.data_dir / name).exists()]

    def ensure_available(self) -> "ReferenceDataLoader":
        """
        Export any missing snapshot before loading.

        Raises:
            ReferenceDataError: If files are missing and no exporter is configured
        """
        missing = self.missing_files()
        if not missing:
            return self
        if self.exporter is None:
            raise ReferenceDataError(
                f"Snapshot files missing from {self.data_dir}: {', '.join(missing)}"
            )
        logger.info(
            f"Snapshot files not found, exporting: {', '.join(missing)}",
            extra={"data_dir": str(self.data_dir), "missing": missing},
        )
        self.exporter.ensure_snapshots_exist()
        return self

    def load_profiles(self) -> dict[int, tuple[str, list[str]]]:
        path = self.data_dir / PROFILES_FILE
        profiles: dict[int, tuple[str, list[str]]] = {}
        for row in read_snapshot(path, PROFILE_COLUMNS):
            fid = _parse_fid(row["fid"], path.name)
            if fid is None:
                continue
            profiles[fid] = (row["fname"].strip(), split_addresses(row["verified_addresses"]))
        return profiles

    def load_grants(self) -> list[Grant]:
        rows = read_snapshot(self.data_dir / GRANTS_FILE, GRANT_COLUMNS)
        return [Grant.model_validate(row) for row in rows if row["id"]]

    def load_cohort_fids(self) -> set[int]:
        path = self.data_dir / CITIZENS_FILE
        fids = set()
        for row in read_snapshot(path, CITIZEN_COLUMNS):
            fid = _parse_fid(row["fid"], path.name)
            if fid is not None:
                fids.add(fid)
        return fids

    def load(self) -> ReferenceData:
        """
        Load all three snapshots.

        Raises:
            ReferenceDataError: If any snapshot is missing or unreadable
        """
        reference = ReferenceData.build(
            profiles=self.load_profiles(),
            grants=self.load_grants(),
            cohort_fids=self.load_cohort_fids(),
        )
        logger.info(
            "Reference data loaded",
            extra={
                "profiles": len(reference.fid_to_addresses),
                "grants": len(reference.grants),
                "cohort_fids": len(reference.cohort_fids),
            },
        )
        return reference
