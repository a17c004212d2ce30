import unittest

from eprocurement.ui_strings import (
    MESSAGES,
    STATUS_GROUPS,
    error_message,
    field_message,
    notification_text,
    status_label,
)


class UiStringsTest(unittest.TestCase):
    def test_required_status_groups_exist(self) -> None:
        self.assertTrue({"request", "proposal", "award_selection"}.issubset(set(STATUS_GROUPS.keys())))

    def test_status_labels_and_descriptions_are_not_empty(self) -> None:
        for group_name, statuses in STATUS_GROUPS.items():
            for status in statuses:
                self.assertTrue((status.get("label") or "").strip(), f"label vacio en {group_name}:{status.get('key')}")
                self.assertTrue(
                    (status.get("description") or "").strip(),
                    f"descripcion vacia en {group_name}:{status.get('key')}",
                )

    def test_status_label_falls_back_to_key(self) -> None:
        self.assertEqual(status_label("request", "awarded"), "Adjudicada")
        self.assertEqual(status_label("request", "otro"), "otro")

    def test_messages_are_ascii(self) -> None:
        for category, entries in MESSAGES.items():
            for key, text in entries.items():
                self.assertTrue(text.isascii(), f"texto no ascii en {category}:{key}")

    def test_unknown_field_uses_generic_validation_message(self) -> None:
        self.assertEqual(field_message("campo_inexistente"), error_message("validation_error"))

    def test_every_notification_kind_has_title_and_message(self) -> None:
        entries = MESSAGES["notification"]
        kinds = {key.split(".", 1)[0] for key in entries}
        for kind in kinds:
            self.assertIn(f"{kind}.title", entries)
            self.assertIn(f"{kind}.message", entries)

    def test_notification_text_formats_values(self) -> None:
        title, message = notification_text("round_advanced", request_number="SOL-00007", round_number=2)
        self.assertEqual(title, "Nueva Ronda de Negociacion")
        self.assertIn("SOL-00007", message)
        self.assertIn("ronda 2", message)

    def test_notification_text_tolerates_missing_values(self) -> None:
        _title, message = notification_text("award_rejected", request_number="SOL-00001")
        self.assertIn("{notes}", message)


if __name__ == "__main__":
    unittest.main()
