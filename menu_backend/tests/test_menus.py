import shutil
import tempfile
import unittest

from menu_backend.db import PostgresRecordStore
from menu_backend.errors import (
    Conflict,
    Forbidden,
    InvalidInput,
    NotFound,
    SlugUnavailable,
)
from menu_backend.file_store import FileRecordStore
from menu_backend.menus import MenuRepository, build_sections, validate_slug
from menu_backend.records import MenuStatus, UserRecord


def appetizers():
    return {
        "id": 1,
        "name": "Appetizers",
        "type": "food",
        "columns": ["Dish", "Price"],
        "title_columns": ["Dish"],
        "items": [{"Dish": "Oysters", "Price": "18"}],
    }


def desserts():
    return {
        "id": 2,
        "name": "Desserts",
        "type": "food",
        "columns": ["Dish", "Price"],
        "items": [{"Dish": "Tarte Tatin", "Price": "11"}],
    }


class SlugAndSectionValidationTests(unittest.TestCase):
    def test_valid_slugs(self):
        for slug in ("abc", "chefs-table", "bistro-42", "a" * 50):
            self.assertEqual(validate_slug(slug), slug)

    def test_invalid_slugs(self):
        for slug in ("ab", "a" * 51, "Chefs-Table", "chef's", "with space", "", None):
            with self.assertRaises(InvalidInput, msg=repr(slug)):
                validate_slug(slug)

    def test_title_columns_default_to_columns(self):
        (section,) = build_sections([desserts()])
        self.assertEqual(section.title_columns, ["Dish", "Price"])

    def test_rejects_duplicate_ids(self):
        with self.assertRaises(InvalidInput):
            build_sections([appetizers(), appetizers()])

    def test_rejects_unknown_title_columns(self):
        section = dict(appetizers(), title_columns=["Wine"])
        with self.assertRaises(InvalidInput):
            build_sections([section])

    def test_rejects_malformed_sections(self):
        with self.assertRaises(InvalidInput):
            build_sections([{"name": "No id", "type": "food"}])
        with self.assertRaises(InvalidInput):
            build_sections([dict(appetizers(), name="  ")])


class MenuRepositoryContract:
    def make_store(self):
        raise NotImplementedError

    def setUp(self):
        self.store = self.make_store()
        self.menus = MenuRepository(self.store, public_base_url="https://menus.example/")
        self.owner = self.store.create_user(
            UserRecord(email="owner@example.com", name="Owner")
        )
        self.other = self.store.create_user(
            UserRecord(email="other@example.com", name="Other")
        )

    def test_create_with_sections(self):
        menu = self.menus.create(
            self.owner.id, " Dinner ", sections=[appetizers()], font_family="Lora"
        )
        self.assertEqual(menu.name, "Dinner")
        self.assertEqual(menu.font_family, "Lora")
        self.assertEqual(menu.status, MenuStatus.DRAFT)
        self.assertEqual([s.id for s in menu.sections], [1])
        self.assertEqual(menu.revision, 1)

    def test_create_requires_name(self):
        with self.assertRaises(InvalidInput):
            self.menus.create(self.owner.id, "   ")

    def test_create_rejects_unknown_fields(self):
        with self.assertRaises(InvalidInput):
            self.menus.create(self.owner.id, "Dinner", status="published")

    def test_create_enforces_plan_limit(self):
        for i in range(self.owner.max_menus):
            self.menus.create(self.owner.id, f"Menu {i}")
        with self.assertRaises(Forbidden):
            self.menus.create(self.owner.id, "One too many")

    def test_deleted_menus_free_plan_slots(self):
        menus = [
            self.menus.create(self.owner.id, f"Menu {i}")
            for i in range(self.owner.max_menus)
        ]
        self.menus.delete(menus[0].id, self.owner.id)
        self.menus.create(self.owner.id, "Replacement")

    def test_ownership(self):
        menu = self.menus.create(self.owner.id, "Dinner")
        self.assertEqual(self.menus.assert_ownership(menu.id, self.owner.id).id, menu.id)
        with self.assertRaises(Forbidden):
            self.menus.assert_ownership(menu.id, self.other.id)
        with self.assertRaises(NotFound):
            self.menus.assert_ownership("missing", self.owner.id)

    def test_foreign_update_leaves_menu_unchanged(self):
        menu = self.menus.create(self.owner.id, "Dinner", sections=[appetizers()])
        with self.assertRaises(Forbidden):
            self.menus.update(
                menu.id, self.other.id, {"name": "Hijacked"}, sections=[desserts()]
            )
        with self.assertRaises(Forbidden):
            self.menus.publish(menu.id, self.other.id, "hijacked", "Hijacked")
        with self.assertRaises(Forbidden):
            self.menus.save_sections(menu.id, self.other.id, [desserts()])
        with self.assertRaises(Forbidden):
            self.menus.delete(menu.id, self.other.id)
        after = self.store.get_menu(menu.id)
        self.assertEqual(after.name, "Dinner")
        self.assertEqual(after.status, MenuStatus.DRAFT)
        self.assertEqual([s.id for s in after.sections], [1])

    def test_update_fields_and_sections(self):
        menu = self.menus.create(self.owner.id, "Dinner", sections=[appetizers()])
        updated = self.menus.update(
            menu.id,
            self.owner.id,
            {"color_palette": "ocean", "section_counter": 2},
            sections=[desserts(), appetizers()],
            expected_revision=menu.revision,
        )
        self.assertEqual(updated.color_palette, "ocean")
        self.assertEqual(updated.section_counter, 2)
        self.assertEqual([s.id for s in updated.sections], [1, 2])
        self.assertEqual(updated.revision, menu.revision + 1)

    def test_update_rejects_bookkeeping_fields(self):
        menu = self.menus.create(self.owner.id, "Dinner")
        with self.assertRaises(InvalidInput):
            self.menus.update(menu.id, self.owner.id, {"status": "published"})
        with self.assertRaises(InvalidInput):
            self.menus.update(menu.id, self.owner.id, {"name": ""})

    def test_null_style_field_aborts_whole_update(self):
        menu = self.menus.create(self.owner.id, "Dinner", sections=[appetizers()])
        with self.assertRaises(InvalidInput):
            self.menus.update(
                menu.id, self.owner.id, {"font_family": None}, sections=[desserts()]
            )
        after = self.store.get_menu(menu.id)
        self.assertEqual(after.font_family, "Inter")
        self.assertEqual([s.id for s in after.sections], [1])
        self.assertEqual(after.revision, menu.revision)

    def test_stale_revision_aborts_whole_update(self):
        menu = self.menus.create(self.owner.id, "Dinner", sections=[appetizers()])
        self.menus.save_sections(menu.id, self.owner.id, [desserts()])
        with self.assertRaises(Conflict):
            self.menus.update(
                menu.id,
                self.owner.id,
                {"name": "Stale"},
                sections=[],
                expected_revision=menu.revision,
            )
        after = self.store.get_menu(menu.id)
        self.assertEqual(after.name, "Dinner")
        self.assertEqual([s.id for s in after.sections], [2])

    def test_save_and_get_sections(self):
        menu = self.menus.create(self.owner.id, "Dinner")
        revision = self.menus.save_sections(
            menu.id, self.owner.id, [appetizers(), desserts()]
        )
        self.assertEqual(revision, 1)
        sections = self.menus.get_sections(menu.id, self.owner.id)
        self.assertEqual([s.name for s in sections], ["Appetizers", "Desserts"])
        self.assertEqual(sections[0].items, [{"Dish": "Oysters", "Price": "18"}])
        with self.assertRaises(Forbidden):
            self.menus.get_sections(menu.id, self.other.id)

    def test_publish_and_public_lookup(self):
        menu = self.menus.create(self.owner.id, "Dinner", sections=[appetizers()])
        published = self.menus.publish(
            menu.id, self.owner.id, "chefs-table", " Chef's Table ", "Seasonal"
        )
        self.assertEqual(published.url, "https://menus.example/menu/chefs-table")
        self.assertEqual(published.title, "Chef's Table")
        public = self.menus.get_published("chefs-table")
        self.assertEqual(public.id, menu.id)
        self.assertEqual(public.status, MenuStatus.PUBLISHED)
        self.assertEqual(public.published_subtitle, "Seasonal")
        self.assertIsNotNone(public.published_at)
        self.assertEqual(public.sections[0].name, "Appetizers")

    def test_publish_validation(self):
        menu = self.menus.create(self.owner.id, "Dinner")
        with self.assertRaises(InvalidInput):
            self.menus.publish(menu.id, self.owner.id, "Bad Slug", "Title")
        with self.assertRaises(InvalidInput):
            self.menus.publish(menu.id, self.owner.id, "good-slug", "  ")
        with self.assertRaises(NotFound):
            self.menus.publish("missing", self.owner.id, "good-slug", "Title")

    def test_slug_conflict(self):
        first = self.menus.create(self.owner.id, "First")
        second = self.menus.create(self.other.id, "Second")
        self.menus.publish(first.id, self.owner.id, "chefs-table", "First")
        with self.assertRaises(SlugUnavailable) as ctx:
            self.menus.publish(second.id, self.other.id, "chefs-table", "Second")
        self.assertEqual(ctx.exception.message, "This URL path is already taken")
        self.assertEqual(self.store.get_menu(second.id).status, MenuStatus.DRAFT)
        self.assertEqual(self.menus.get_published("chefs-table").id, first.id)

    def test_republish_same_menu(self):
        menu = self.menus.create(self.owner.id, "Dinner")
        self.menus.publish(menu.id, self.owner.id, "chefs-table", "First title")
        self.menus.publish(menu.id, self.owner.id, "chefs-table", "Second title")
        self.assertEqual(
            self.menus.get_published("chefs-table").published_title, "Second title"
        )
        self.menus.publish(menu.id, self.owner.id, "new-home", "Moved")
        self.assertTrue(self.menus.check_slug_availability("chefs-table"))
        with self.assertRaises(NotFound):
            self.menus.get_published("chefs-table")

    def test_check_slug_availability(self):
        menu = self.menus.create(self.owner.id, "Dinner")
        self.assertTrue(self.menus.check_slug_availability("chefs-table"))
        self.menus.publish(menu.id, self.owner.id, "chefs-table", "Dinner")
        self.assertFalse(self.menus.check_slug_availability("chefs-table"))
        self.assertTrue(self.menus.check_slug_availability("chefs-table", menu.id))
        with self.assertRaises(InvalidInput):
            self.menus.check_slug_availability("x")

    def test_chefs_table_scenario(self):
        menu = self.menus.create(self.owner.id, "Tasting menu")
        self.menus.save_sections(
            menu.id,
            self.owner.id,
            [
                {
                    "id": 1,
                    "name": "Courses",
                    "type": "food",
                    "columns": ["Course", "Pairing"],
                    "title_columns": ["Course"],
                    "items": [
                        {"Course": "Amuse-bouche", "Pairing": "Champagne"},
                        {"Course": "Lamb", "Pairing": "Syrah"},
                    ],
                }
            ],
        )
        self.menus.publish(menu.id, self.owner.id, "chefs-table", "Chef's Table")
        public = self.menus.get_published("chefs-table")
        self.assertEqual(public.published_title, "Chef's Table")
        self.assertEqual(
            [item["Course"] for item in public.sections[0].items],
            ["Amuse-bouche", "Lamb"],
        )
        listed = self.menus.list_for_user(self.owner.id)
        self.assertEqual([m.id for m in listed], [menu.id])
        self.assertEqual(listed[0].status, MenuStatus.PUBLISHED)

    def test_delete_is_soft_and_terminal(self):
        menu = self.menus.create(self.owner.id, "Dinner", sections=[appetizers()])
        self.menus.publish(menu.id, self.owner.id, "chefs-table", "Dinner")
        self.menus.delete(menu.id, self.owner.id)

        stored = self.store.get_menu(menu.id)
        self.assertIsNotNone(stored)
        self.assertEqual(stored.status, MenuStatus.DELETED)
        self.assertEqual(self.store.get_menu_sections(menu.id), [])
        self.assertEqual(self.menus.list_for_user(self.owner.id), [])
        with self.assertRaises(NotFound):
            self.menus.get_published("chefs-table")
        with self.assertRaises(NotFound):
            self.menus.update(menu.id, self.owner.id, {"name": "Back"})
        with self.assertRaises(NotFound):
            self.menus.delete(menu.id, self.owner.id)
        self.assertTrue(self.menus.check_slug_availability("chefs-table"))


class PostgresMenuRepositoryTests(MenuRepositoryContract, unittest.TestCase):
    def make_store(self):
        return PostgresRecordStore("sqlite+pysqlite:///:memory:")


class FileMenuRepositoryTests(MenuRepositoryContract, unittest.TestCase):
    def make_store(self):
        data_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, data_dir, ignore_errors=True)
        return FileRecordStore(data_dir)


if __name__ == "__main__":
    unittest.main()
