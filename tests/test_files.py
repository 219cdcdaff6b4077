"""
Tests for the archive extractor and file helpers in files.py.

Covers:
- Flat client unpack and wrapper-folder normalization
- Selective addon unpack of descriptor-marked folders
- Path traversal protection
- Addon folder removal
- Atomic JSON writes
"""

import json
import os

import pytest

from synlauncher.download.files import (
    ArchiveExtractor,
    _atomic_write_json,
    _normalize_member_name,
    _is_safe_archive_member,
    _sanitize_path_component,
    addons_dir_for,
    is_valid_client_dir,
    safe_extract_path,
)
from synlauncher.exceptions import (
    CorruptedArchiveError,
    FileSystemError,
    NoQualifyingContentError,
)

pytestmark = [pytest.mark.unit, pytest.mark.core_downloads]


@pytest.fixture
def extractor():
    return ArchiveExtractor()


def _tree(root):
    """Relative file paths under `root`, with forward slashes."""
    found = []
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            path = os.path.join(dirpath, filename)
            found.append(os.path.relpath(path, root).replace(os.sep, "/"))
    return sorted(found)


class TestPathHelpers:
    """Member name normalization and path safety."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Addon\\Addon.toc", "Addon/Addon.toc"),
            ("Addon/", "Addon/"),
            ("Addon\\", "Addon/"),
            ("./Addon//file.lua", "Addon/file.lua"),
            ("/", ""),
        ],
    )
    def test_normalize_member_name(self, raw, expected):
        assert _normalize_member_name(raw) == expected

    @pytest.mark.parametrize(
        "name, safe",
        [
            ("Addon/file.lua", True),
            ("Addon/", True),
            ("../evil.lua", False),
            ("Addon/../../evil.lua", False),
            ("/etc/passwd", False),
            ("C:/Windows/evil.dll", False),
            ("bad\x00name", False),
            ("", False),
        ],
    )
    def test_is_safe_archive_member(self, name, safe):
        assert _is_safe_archive_member(name) is safe

    @pytest.mark.parametrize(
        "component", [None, "", " ", ".", "..", "a/b", "a\\b", "/abs"]
    )
    def test_sanitize_rejects_unsafe_components(self, component):
        assert _sanitize_path_component(component) is None

    def test_sanitize_trims(self):
        assert _sanitize_path_component("  ElvUI ") == "ElvUI"

    def test_safe_extract_path_inside(self, tmp_path):
        assert safe_extract_path(tmp_path, "a/b.txt") == os.path.join(
            os.path.realpath(tmp_path), "a", "b.txt"
        )

    def test_safe_extract_path_outside(self, tmp_path):
        with pytest.raises(ValueError):
            safe_extract_path(tmp_path / "base", "../escape.txt")


class TestClientLayoutHelpers:
    def test_addons_dir_for(self, tmp_path):
        assert addons_dir_for(tmp_path) == tmp_path / "Interface" / "AddOns"

    def test_is_valid_client_dir(self, tmp_path, client_dir):
        assert is_valid_client_dir(client_dir) is True
        assert is_valid_client_dir(str(client_dir)) is True
        assert is_valid_client_dir(tmp_path / "missing") is False
        assert is_valid_client_dir("") is False

    def test_wowext_executable_counts(self, tmp_path):
        (tmp_path / "wowext.exe").write_bytes(b"MZ")

        assert is_valid_client_dir(tmp_path) is True


class TestExtractClient:
    """Flat unpack of client and patch archives."""

    def test_wrapper_folder_is_collapsed(self, extractor, zip_builder, tmp_path):
        archive = zip_builder(
            "Client.zip",
            [
                ("Client/", None),
                ("Client/wow.exe", b"MZ"),
                ("Client/Data/", None),
                ("Client/Data/common.MPQ", b"mpq"),
            ],
        )
        destination = tmp_path / "game"
        progress = []

        verified = extractor.extract_client(archive, destination, progress.append)

        assert verified is True
        assert _tree(destination) == ["Data/common.MPQ", "wow.exe"]
        assert not (destination / "Client").exists()
        assert not archive.exists()
        assert progress == [50, 100]

    def test_wrapper_match_ignores_case(self, extractor, zip_builder, tmp_path):
        archive = zip_builder("client.zip", [("CLIENT/wow.exe", b"MZ")])

        assert extractor.extract_client(archive, tmp_path / "game") is True
        assert _tree(tmp_path / "game") == ["wow.exe"]

    def test_wrapper_holding_same_named_entry(self, extractor, zip_builder, tmp_path):
        archive = zip_builder(
            "Client.zip",
            [("Client/wow.exe", b"MZ"), ("Client/Client/readme.txt", b"nested")],
        )
        destination = tmp_path / "game"

        assert extractor.extract_client(archive, destination) is True
        assert _tree(destination) == ["Client/readme.txt", "wow.exe"]

    def test_differently_named_folder_is_kept(self, extractor, zip_builder, tmp_path):
        archive = zip_builder("Client.zip", [("WoW 3.3.5/wow.exe", b"MZ")])
        destination = tmp_path / "game"

        verified = extractor.extract_client(archive, destination)

        assert verified is False
        assert _tree(destination) == ["WoW 3.3.5/wow.exe"]
        assert archive.exists()

    def test_flat_archive_merges_into_existing_client(
        self, extractor, zip_builder, client_dir
    ):
        (client_dir / "Data").mkdir()
        (client_dir / "Data" / "patch-A.MPQ").write_bytes(b"old")
        (client_dir / "Data" / "common.MPQ").write_bytes(b"keep")
        archive = zip_builder(
            "WoWExt_v12.zip", [("Data/patch-A.MPQ", b"new"), ("wowext.exe", b"MZ")]
        )

        assert extractor.extract_client(archive, client_dir) is True
        assert (client_dir / "Data" / "patch-A.MPQ").read_bytes() == b"new"
        assert (client_dir / "Data" / "common.MPQ").read_bytes() == b"keep"
        assert (client_dir / "wowext.exe").exists()
        assert not archive.exists()

    def test_wrapper_merges_with_existing_directories(
        self, extractor, zip_builder, client_dir
    ):
        (client_dir / "Data").mkdir()
        (client_dir / "Data" / "common.MPQ").write_bytes(b"keep")
        archive = zip_builder("Client.zip", [("Client/Data/patch-B.MPQ", b"new")])

        assert extractor.extract_client(archive, client_dir) is True
        assert _tree(client_dir / "Data") == ["common.MPQ", "patch-B.MPQ"]

    def test_unverified_extraction_keeps_archive(
        self, extractor, zip_builder, tmp_path
    ):
        archive = zip_builder("Client.zip", [("readme.txt", b"hello")])

        assert extractor.extract_client(archive, tmp_path / "game") is False
        assert archive.exists()

    def test_traversal_members_are_skipped(self, extractor, zip_builder, tmp_path):
        archive = zip_builder(
            "Client.zip",
            [("../evil.txt", b"x"), ("/abs.txt", b"x"), ("wow.exe", b"MZ")],
        )
        destination = tmp_path / "game"

        assert extractor.extract_client(archive, destination) is True
        assert _tree(destination) == ["wow.exe"]
        assert not (tmp_path / "evil.txt").exists()

    def test_move_progress_errors_are_ignored(self, extractor, zip_builder, tmp_path):
        archive = zip_builder("Client.zip", [("Client/wow.exe", b"MZ")])

        def broken(_percent):
            raise RuntimeError("ui gone")

        assert extractor.extract_client(archive, tmp_path / "game", broken) is True

    def test_corrupted_archive(self, extractor, tmp_path):
        archive = tmp_path / "Client.zip"
        archive.write_bytes(b"this is not a zip")

        with pytest.raises(CorruptedArchiveError) as exc_info:
            extractor.extract_client(archive, tmp_path / "game")

        assert exc_info.value.archive_path == str(archive)


class TestFindAddonUnits:
    def test_order_of_first_appearance(self, extractor):
        names = [
            "repo-main/Zeta/Zeta.toc",
            "repo-main/Alpha/Alpha.toc",
            "repo-main/Zeta/Zeta_TBC.toc",
            "repo-main/Readme.md",
        ]

        units = extractor.find_addon_units(names)
        assert units == ["repo-main/Zeta", "repo-main/Alpha"]

    def test_case_insensitive_extension(self, extractor):
        assert extractor.find_addon_units(["A/A.TOC"]) == ["A"]

    def test_descriptor_at_archive_root_is_not_a_unit(self, extractor):
        assert extractor.find_addon_units(["Addon.toc", "dir/"]) == []

    def test_custom_descriptor_extension(self):
        assert ArchiveExtractor(".addon").find_addon_units(
            ["x/pkg/pkg.addon", "x/other/other.toc"]
        ) == ["x/pkg"]


class TestExtractAddon:
    """Selective unpack of addon archives."""

    def test_installs_only_descriptor_folders(self, extractor, zip_builder, tmp_path):
        archive = zip_builder(
            "SomeAddon_latest.zip",
            [
                ("repo-main/", None),
                ("repo-main/Readme.md", b"readme"),
                ("repo-main/PackageA/", None),
                ("repo-main/PackageA/PackageA.toc", b"## Title: A"),
                ("repo-main/PackageA/file.lua", b"print('a')"),
                ("repo-main/PackageB/PackageB.toc", b"## Title: B"),
                ("repo-main/PackageB/libs/util.lua", b"-- util"),
            ],
        )
        addons_dir = tmp_path / "Interface" / "AddOns"

        installed = extractor.extract_addon(archive, addons_dir)

        assert installed == ["PackageA", "PackageB"]
        assert _tree(addons_dir) == [
            "PackageA/PackageA.toc",
            "PackageA/file.lua",
            "PackageB/PackageB.toc",
            "PackageB/libs/util.lua",
        ]
        assert not archive.exists()

    def test_existing_folder_is_replaced_not_merged(
        self, extractor, zip_builder, tmp_path
    ):
        addons_dir = tmp_path / "AddOns"
        (addons_dir / "PackageA").mkdir(parents=True)
        (addons_dir / "PackageA" / "old.lua").write_bytes(b"stale")
        (addons_dir / "Unrelated").mkdir()
        archive = zip_builder(
            "a.zip",
            [("r/PackageA/PackageA.toc", b"toc"), ("r/PackageA/new.lua", b"fresh")],
        )

        extractor.extract_addon(archive, addons_dir)

        assert _tree(addons_dir / "PackageA") == ["PackageA.toc", "new.lua"]
        assert (addons_dir / "Unrelated").is_dir()

    def test_backslash_member_names(self, extractor, zip_builder, tmp_path):
        archive = zip_builder(
            "a.zip",
            [
                ("repo-main\\PackageA\\PackageA.toc", b"toc"),
                ("repo-main\\PackageA\\Modules\\core.lua", b"core"),
            ],
        )
        addons_dir = tmp_path / "AddOns"

        assert extractor.extract_addon(archive, addons_dir) == ["PackageA"]
        assert _tree(addons_dir) == [
            "PackageA/Modules/core.lua",
            "PackageA/PackageA.toc",
        ]

    def test_no_qualifying_content_writes_nothing(
        self, extractor, zip_builder, tmp_path
    ):
        archive = zip_builder(
            "a.zip", [("repo-main/Readme.md", b"r"), ("repo-main/src/main.lua", b"x")]
        )
        addons_dir = tmp_path / "AddOns"

        with pytest.raises(NoQualifyingContentError) as exc_info:
            extractor.extract_addon(archive, addons_dir)

        assert ".toc" in str(exc_info.value)
        assert not addons_dir.exists()
        assert archive.exists()

    def test_only_unusable_folder_names(self, extractor, zip_builder, tmp_path):
        archive = zip_builder(
            "a.zip",
            [("repo-main/   /Addon.toc", b"## Title"), ("repo-main/   /a.lua", b"x")],
        )
        addons_dir = tmp_path / "AddOns"

        with pytest.raises(NoQualifyingContentError):
            extractor.extract_addon(archive, addons_dir)

        assert _tree(addons_dir) == []
        assert archive.exists()

    def test_nested_unit_installs_under_its_own_name(
        self, extractor, zip_builder, tmp_path
    ):
        archive = zip_builder(
            "a.zip", [("repo-main/addons/Deep/Deep.toc", b"toc")]
        )
        addons_dir = tmp_path / "AddOns"

        assert extractor.extract_addon(archive, addons_dir) == ["Deep"]
        assert _tree(addons_dir) == ["Deep/Deep.toc"]

    def test_corrupted_archive(self, extractor, tmp_path):
        archive = tmp_path / "a.zip"
        archive.write_bytes(b"PK\x03\x04 truncated")

        with pytest.raises(CorruptedArchiveError):
            extractor.extract_addon(archive, tmp_path / "AddOns")


class TestUninstallAddon:
    """Addon folder removal."""

    def test_removes_single_folder(self, extractor, tmp_path):
        (tmp_path / "Questie" / "Modules").mkdir(parents=True)
        (tmp_path / "QuestieDev").mkdir()

        assert extractor.uninstall_addon("Questie", tmp_path) == ["Questie"]
        assert not (tmp_path / "Questie").exists()
        assert (tmp_path / "QuestieDev").exists()

    def test_multi_folder_addon_removes_prefix_matches(self, extractor, tmp_path):
        for name in ("AtlasLoot", "AtlasLoot_Cache", "AtlasLoot_Mythic", "Atlas"):
            (tmp_path / name).mkdir()

        removed = extractor.uninstall_addon("AtlasLoot_Mythic", tmp_path)

        assert removed == ["AtlasLoot", "AtlasLoot_Cache", "AtlasLoot_Mythic"]
        assert sorted(os.listdir(tmp_path)) == ["Atlas"]

    def test_missing_folder(self, extractor, tmp_path):
        assert extractor.uninstall_addon("Questie", tmp_path) == []
        assert extractor.uninstall_addon("Questie", tmp_path / "missing") == []

    @pytest.mark.parametrize("folder", ["..", "../Questie", ""])
    def test_unsafe_folder_name(self, extractor, tmp_path, folder):
        with pytest.raises(FileSystemError):
            extractor.uninstall_addon(folder, tmp_path)

    def test_removal_failure_raises(self, extractor, tmp_path, mocker):
        (tmp_path / "Questie").mkdir()
        mocker.patch(
            "synlauncher.download.files.shutil.rmtree",
            side_effect=PermissionError("locked"),
        )

        with pytest.raises(FileSystemError) as exc_info:
            extractor.uninstall_addon("Questie", tmp_path)

        assert "Questie" in str(exc_info.value)


class TestAtomicWriteJson:
    def test_writes_indented_json(self, tmp_path):
        target = tmp_path / "config.json"

        payload = {"installed": True, "addons": []}
        assert _atomic_write_json(str(target), payload) is True
        assert json.loads(target.read_text()) == {"installed": True, "addons": []}
        assert '\n  "installed": true' in target.read_text()
        assert sorted(os.listdir(tmp_path)) == ["config.json"]

    def test_unserializable_data_keeps_previous_file(self, tmp_path):
        target = tmp_path / "config.json"
        target.write_text('{"installed": false}')

        assert _atomic_write_json(str(target), {"bad": object()}) is False
        assert json.loads(target.read_text()) == {"installed": False}
        assert sorted(os.listdir(tmp_path)) == ["config.json"]
