"""Tests for folder tree building and the per-account folder cache."""

from kestrel_mail.core import FolderEntry
from kestrel_mail.folders import FolderCache, build_folder_tree, count_unseen, iter_nodes


def _entry(path: str, parent: str | None = None, unseen: int | None = None, **kwargs) -> FolderEntry:
    return FolderEntry(
        path=path,
        name=path.rsplit("/", 1)[-1],
        parent_path=parent,
        unseen=unseen,
        **kwargs,
    )


class TestBuildFolderTree:
    def test_child_listed_before_parent(self):
        forest = build_folder_tree([
            _entry("Work/Alpha", "Work"),
            _entry("Work"),
        ])
        assert [n.path for n in forest] == ["Work"]
        assert [c.path for c in forest[0].children] == ["Work/Alpha"]

    def test_orphan_becomes_root(self):
        forest = build_folder_tree([
            _entry("INBOX"),
            _entry("Gone/Child", "Gone"),
        ])
        assert [n.path for n in forest] == ["INBOX", "Gone/Child"]

    def test_every_path_appears_exactly_once(self):
        entries = [
            _entry("A/B/C", "A/B"),
            _entry("A"),
            _entry("A/B", "A"),
            _entry("Z/Y", "Z"),
            _entry("INBOX"),
        ]
        paths = [n.path for n in iter_nodes(build_folder_tree(entries))]
        assert sorted(paths) == sorted(e.path for e in entries)
        assert len(paths) == len(set(paths))

    def test_listing_order_is_kept(self):
        forest = build_folder_tree([
            _entry("Zeta"),
            _entry("Alpha"),
            _entry("Zeta/2", "Zeta"),
            _entry("Zeta/1", "Zeta"),
        ])
        assert [n.path for n in forest] == ["Zeta", "Alpha"]
        assert [c.path for c in forest[0].children] == ["Zeta/2", "Zeta/1"]

    def test_duplicate_entry_is_ignored(self):
        forest = build_folder_tree([_entry("INBOX", unseen=1), _entry("INBOX", unseen=9)])
        assert len(forest) == 1
        assert forest[0].unseen_messages == 1

    def test_leaf_has_no_children(self):
        forest = build_folder_tree([_entry("INBOX")])
        assert forest[0].children is None
        assert not forest[0].has_children

    def test_noselect_folder_is_not_selectable(self):
        forest = build_folder_tree([_entry("[Gmail]", flags=["\\Noselect", "\\HasChildren"])])
        assert forest[0].selectable is False

    def test_empty_listing(self):
        assert build_folder_tree([]) == []


class TestCountUnseen:
    def test_sums_whole_subtree(self):
        forest = build_folder_tree([
            _entry("INBOX", unseen=2),
            _entry("Work", unseen=None),
            _entry("Work/Alpha", "Work", unseen=3),
            _entry("Work/Alpha/Deep", "Work/Alpha", unseen=4),
        ])
        assert count_unseen(forest) == 9

    def test_missing_counts_are_zero(self):
        assert count_unseen(build_folder_tree([_entry("INBOX")])) == 0


class TestFolderCache:
    def test_store_and_lookup(self):
        cache = FolderCache()
        cache.store("work", build_folder_tree([_entry("Work"), _entry("Work/Alpha", "Work")]))

        assert "work" in cache
        assert cache.node("work", "Work/Alpha").display_name == "Alpha"
        assert cache.parent_of("work", "Work/Alpha").path == "Work"
        assert cache.parent_of("work", "Work") is None

    def test_orphan_has_no_parent(self):
        cache = FolderCache()
        cache.store("work", build_folder_tree([_entry("Gone/Child", "Gone")]))
        assert cache.parent_of("work", "Gone/Child") is None

    def test_invalidate_one_account(self):
        cache = FolderCache()
        cache.store("a", build_folder_tree([_entry("INBOX", unseen=1)]))
        cache.store("b", build_folder_tree([_entry("INBOX", unseen=2)]))

        cache.invalidate("a")

        assert cache.get("a") is None
        assert cache.node("a", "INBOX") is None
        assert cache.accounts() == ["b"]
        assert cache.unseen_total() == 2

    def test_clear(self):
        cache = FolderCache()
        cache.store("a", build_folder_tree([_entry("INBOX", unseen=1)]))
        cache.clear()
        assert cache.accounts() == []
        assert cache.unseen_total() == 0
