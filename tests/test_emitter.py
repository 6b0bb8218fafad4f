import sys
import tempfile
from pathlib import Path
import unittest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT / "src") not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT / "src"))

from godot_helper.diagnostics import DUPLICATE_ACCESSOR_PATH, SIGNAL_NAME_SUFFIX, DeclarationError
from godot_helper.emitter import (
    GeneratedFragment,
    HelperFragmentState,
    SingletonRegistry,
    SingletonSlot,
    handle_accessor,
    handle_event_emit,
    handle_remote_call,
    outdated_fragments,
    render_class_helpers,
    render_connection_list,
    render_input_actions,
    render_notify_properties,
    render_registry,
    render_singleton_class,
    sanitize_identifier,
    stale_fragment_paths,
    to_pascal_case,
    write_fragments,
)
from godot_helper.manifest import EntryKind, ManifestEntry
from godot_helper.scanner import ACCESSOR_MARKER, NOTIFY_MARKER, DeclaredMember, MemberKind, SingletonRecord, scan_class
from godot_helper.scene import parse_scene
from godot_helper.symbols import parse_symbol_snapshot

from fixtures import SCENE_TEXT, marker, symbol_document


def scanned_class(qualified_name, *extra_types):
    symbols = parse_symbol_snapshot(symbol_document(*extra_types))
    return scan_class(symbols[qualified_name], symbols.get)


def accessor(name, *marker_args, symbol_kind="field", member_type="global::Godot.Node"):
    return DeclaredMember(
        kind=MemberKind.ACCESSOR,
        owner="Game.Player",
        name=name,
        type=member_type,
        marker_args=marker_args or ("", True),
        symbol_kind=symbol_kind,
    )


def game_state_record(base_is_singleton=False, namespace="Game"):
    qualified_name = f"{namespace}.GameState" if namespace else "GameState"
    return SingletonRecord(
        base_is_singleton=base_is_singleton,
        namespace=namespace,
        hint_name=f"{qualified_name}_GodotHelper_AutoLoad.g.cs",
        name="GameState",
        fully_qualified_name=f"global::{qualified_name}",
    )


class MemberHandlerTest(unittest.TestCase):
    def setUp(self) -> None:
        self.state = HelperFragmentState(scanned=scanned_class("Game.Player"))

    def test_accessor_lookup_variants(self) -> None:
        handle_accessor(accessor("_unique", "", True), self.state)
        handle_accessor(accessor("_optional", "", False), self.state)
        handle_accessor(accessor("_explicit", "Explicit/Path", True), self.state)
        self.assertEqual(
            self.state.accessor_field_lines,
            [
                '        _unique = GetNode<global::Godot.Node>("%_unique");',
                '        _optional = GetNodeOrNull<global::Godot.Node>("%_optional");',
                '        _explicit = GetNode<global::Godot.Node>("Explicit/Path");',
            ],
        )

    def test_properties_are_kept_apart_from_fields(self) -> None:
        handle_accessor(accessor("Camera", "Camera2D", True, symbol_kind="property"), self.state)
        self.assertEqual(self.state.accessor_field_lines, [])
        self.assertEqual(len(self.state.accessor_property_lines), 1)

    def test_duplicate_accessor_path_is_rejected(self) -> None:
        handle_accessor(accessor("_first", "Shared/Path", True), self.state)
        with self.assertRaises(DeclarationError) as caught:
            handle_accessor(accessor("_second", "Shared/Path", False), self.state)
        self.assertEqual(caught.exception.diagnostic.diagnostic_id, DUPLICATE_ACCESSOR_PATH)
        self.assertIn("_first", caught.exception.diagnostic.message)

    def test_remote_call_wrappers(self) -> None:
        member = DeclaredMember(
            kind=MemberKind.REMOTE_CALL,
            owner="Game.Player",
            name="F",
            type="void",
            parameters=(("a", "int"), ("b", "string")),
        )
        handle_remote_call(member, self.state)
        text = "\n".join(self.state.wrapper_lines)
        self.assertIn("public void RpcF(int a, string b)", text)
        self.assertIn("Rpc(MethodName.F, a, b);", text)
        self.assertIn("public void RpcF(long peerId, int a, string b)", text)
        self.assertIn("RpcId(peerId, MethodName.F, a, b);", text)

    def test_remote_call_without_parameters(self) -> None:
        member = DeclaredMember(kind=MemberKind.REMOTE_CALL, owner="Game.Player", name="Ping", type="void")
        handle_remote_call(member, self.state)
        text = "\n".join(self.state.wrapper_lines)
        self.assertIn("public void RpcPing()", text)
        self.assertIn("Rpc(MethodName.Ping);", text)
        self.assertIn("public void RpcPing(long peerId)", text)
        self.assertIn("RpcId(peerId, MethodName.Ping);", text)

    def test_event_emit_wrapper(self) -> None:
        member = DeclaredMember(
            kind=MemberKind.EVENT_EMIT,
            owner="Game.Player",
            name="DeathEventHandler",
            type="void",
            parameters=(("hp", "int"),),
        )
        handle_event_emit(member, self.state)
        text = "\n".join(self.state.wrapper_lines)
        self.assertIn('/// <inheritdoc cref="global::Game.Player.DeathEventHandler"/>', text)
        self.assertIn("public void EmitDeath(int hp)", text)
        self.assertIn("EmitSignal(SignalName.Death, hp);", text)

    def test_event_delegate_without_suffix_is_rejected(self) -> None:
        for delegate_name in ("Death", "EventHandler"):
            member = DeclaredMember(kind=MemberKind.EVENT_EMIT, owner="Game.Player", name=delegate_name, type="void")
            with self.assertRaises(DeclarationError) as caught:
                handle_event_emit(member, self.state)
            self.assertEqual(caught.exception.diagnostic.diagnostic_id, SIGNAL_NAME_SUFFIX)


class ClassHelperRenderTest(unittest.TestCase):
    def test_fields_then_properties_inside_get_nodes(self) -> None:
        hud = {
            "name": "Hud",
            "namespace": "Game",
            "assembly": "Game",
            "base_type": "Godot.Node",
            "members": [
                {"kind": "property", "name": "Camera", "type": "global::Godot.Camera2D",
                 "markers": [marker(ACCESSOR_MARKER, "Camera2D")]},
                {"kind": "field", "name": "_label", "type": "global::Godot.Label",
                 "markers": [marker(ACCESSOR_MARKER)]},
            ],
        }
        fragment = render_class_helpers(scanned_class("Game.Hud", hud))
        self.assertEqual(fragment.hint_name, "Game.Hud_GodotHelper.g.cs")
        self.assertEqual(
            fragment.text,
            "using Godot;\n"
            "using Godot.NativeInterop;\n"
            "\n"
            "namespace Game {\n"
            "\n"
            "partial class Hud\n"
            "{\n"
            "    public void GetNodes()\n"
            "    {\n"
            '        _label = GetNode<global::Godot.Label>("%_label");\n'
            "\n"
            '        Camera = GetNode<global::Godot.Camera2D>("Camera2D");\n'
            "    }\n"
            "}\n"
            "\n"
            "}\n",
        )

    def test_player_helper_holds_every_member_kind(self) -> None:
        fragment = render_class_helpers(scanned_class("Game.Player"))
        self.assertEqual(fragment.hint_name, "Game.Player_GodotHelper.g.cs")
        self.assertIn('_sprite = GetNodeOrNull<global::Godot.Sprite2D>("Body/Sprite");', fragment.text)
        self.assertIn("public void RpcFire(int a, string b)", fragment.text)
        self.assertIn("public void EmitDeath(int hp)", fragment.text)
        self.assertTrue(fragment.text.endswith("}\n\n}\n"))

    def test_nested_class_is_wrapped_in_its_containers(self) -> None:
        outer = {"name": "Outer", "namespace": "Game", "assembly": "Game"}
        slot = {
            "name": "Slot", "namespace": "Game", "containing_type": "Game.Outer", "assembly": "Game",
            "type_parameters": ["T"], "base_type": "Godot.Node",
            "members": [{"kind": "field", "name": "_icon", "type": "global::Godot.Node",
                         "markers": [marker(ACCESSOR_MARKER)]}],
        }
        fragment = render_class_helpers(scanned_class("Game.Outer.Slot", outer, slot))
        self.assertEqual(fragment.hint_name, "Game.Outer.Slot(Of T)_GodotHelper.g.cs")
        self.assertIn("partial class Outer\n{\npartial class Slot<T>\n{\n", fragment.text)
        self.assertTrue(fragment.text.endswith("}\n}\n\n}\n"))

    def test_classes_without_helpers_render_nothing(self) -> None:
        self.assertIsNone(render_class_helpers(scanned_class("Game.Plain")))
        self.assertIsNone(render_class_helpers(scanned_class("Game.GameState")))


class RegistryRenderTest(unittest.TestCase):
    def test_registry_slots_and_resolve_others(self) -> None:
        registry = SingletonRegistry.from_slots([
            SingletonSlot(name="GameState", record=game_state_record()),
            SingletonSlot(name="Audio"),
        ])
        self.assertEqual([slot.name for slot in registry.generic_slots], ["Audio"])
        self.assertEqual([slot.slot_type for slot in registry.typed_slots], ["global::Game.GameState"])

        fragment = render_registry(registry)
        self.assertEqual(fragment.hint_name, "HelperGenerator_AutoLoad.g.cs")
        self.assertEqual(
            fragment.text,
            "using Godot;\n"
            "using System;\n"
            "\n"
            "public partial class AutoLoad\n"
            "{\n"
            "    public static Node Audio { get; set; } = null!;\n"
            "    public static global::Game.GameState GameState { get; set; } = null!;\n"
            "\n"
            "    public static void ResolveOthers(Node node)\n"
            "    {\n"
            '        Audio ??= node.GetNode("/root/Audio");\n'
            "    }\n"
            "}\n",
        )

    def test_empty_registry_renders_nothing(self) -> None:
        self.assertIsNone(render_registry(SingletonRegistry()))

    def test_registry_without_typed_slot_renders_nothing(self) -> None:
        registry = SingletonRegistry.from_slots([SingletonSlot(name="Audio"), SingletonSlot(name="Music")])
        self.assertEqual(len(registry.generic_slots), 2)
        self.assertIsNone(render_registry(registry))

    def test_singleton_class_stores_itself_when_ready(self) -> None:
        fragment = render_singleton_class(SingletonSlot(name="GameState", record=game_state_record()))
        self.assertEqual(fragment.hint_name, "Game.GameState_GodotHelper_AutoLoad.g.cs")
        self.assertIn("namespace Game;\n", fragment.text)
        self.assertIn("        AutoLoad.GameState = this;\n", fragment.text)
        self.assertIn("        AutoLoad.ResolveOthers(this);\n", fragment.text)
        self.assertNotIn("Ready -= base.ReadyCallback;", fragment.text)

    def test_singleton_derived_from_singleton_unsubscribes_base(self) -> None:
        fragment = render_singleton_class(
            SingletonSlot(name="GameState", record=game_state_record(base_is_singleton=True, namespace=""))
        )
        self.assertIn("        Ready -= base.ReadyCallback;\n        Ready += ReadyCallback;\n", fragment.text)
        self.assertNotIn("namespace", fragment.text)

    def test_generic_slot_has_no_singleton_class(self) -> None:
        self.assertIsNone(render_singleton_class(SingletonSlot(name="Audio")))


class InputActionRenderTest(unittest.TestCase):
    def test_action_names_become_identifiers(self) -> None:
        entries = [
            ManifestEntry(EntryKind.INPUT_ACTION, "ui-accept"),
            ManifestEntry(EntryKind.INPUT_ACTION, "class"),
            ManifestEntry(EntryKind.INPUT_ACTION, "jump"),
        ]
        fragment = render_input_actions(entries)
        self.assertEqual(fragment.hint_name, "HelperGenerator_InputActionName.g.cs")
        self.assertEqual(
            fragment.text,
            "using Godot;\n"
            "using System;\n"
            "\n"
            "public partial class InputActionName\n"
            "{\n"
            '    public static readonly StringName @class = "class";\n'
            '    public static readonly StringName jump = "jump";\n'
            '    public static readonly StringName ui_accept = "ui-accept";\n'
            "}\n",
        )

    def test_no_actions_renders_nothing(self) -> None:
        self.assertIsNone(render_input_actions([]))

    def test_sanitize_identifier(self) -> None:
        self.assertEqual(sanitize_identifier("move up"), "move_up")
        self.assertEqual(sanitize_identifier("2d_jump"), "_2d_jump")
        self.assertEqual(sanitize_identifier(""), "_")
        self.assertEqual(sanitize_identifier("int"), "@int")


class ConnectionListRenderTest(unittest.TestCase):
    def setUp(self) -> None:
        self.record = scanned_class("Game.Player").class_record
        self.references = [reference for _ordinal, reference in parse_scene("res://main.tscn", SCENE_TEXT.splitlines()).connection_references()]

    def test_connected_methods_are_referenced(self) -> None:
        fragment = render_connection_list(self.record, self.references)
        self.assertEqual(fragment.hint_name, "Game.Player_GodotHelper_ConnectionTscn.g.cs")
        self.assertIn(
            "        // res://main.tscn - FromNode: Button - Signal: pressed\n        OnButtonPressed();\n",
            fragment.text,
        )
        self.assertIn("#if TOOLS\n", fragment.text)
        self.assertNotIn("Fire(", fragment.text)

    def test_no_matching_methods_renders_nothing(self) -> None:
        self.assertIsNone(render_connection_list(self.record, []))


class NotifyRenderTest(unittest.TestCase):
    def test_notify_property_for_field(self) -> None:
        fragment = render_notify_properties(scanned_class("Game.Player"))
        self.assertEqual(fragment.hint_name, "Game.Player_GodotHelperNotify.g.cs")
        self.assertIn("namespace Game\n{\n    public partial class Player\n    {\n", fragment.text)
        self.assertIn("        public event Action<int, int> HpChanged;\n", fragment.text)
        self.assertIn("        public int Hp\n", fragment.text)
        self.assertIn("                    _hp = value;\n", fragment.text)

    def test_field_whose_name_would_not_change_is_skipped(self) -> None:
        plain = {
            "name": "Counter", "namespace": "Game", "assembly": "Game",
            "members": [{"kind": "field", "name": "Score", "type": "int", "markers": [marker(NOTIFY_MARKER)]}],
        }
        self.assertIsNone(render_notify_properties(scanned_class("Game.Counter", plain)))

    def test_nested_class_gets_no_notify_fragment(self) -> None:
        outer = {"name": "Outer", "namespace": "Game", "assembly": "Game"}
        inner = {
            "name": "Inner", "namespace": "Game", "containing_type": "Game.Outer", "assembly": "Game",
            "members": [{"kind": "field", "name": "_value", "type": "int", "markers": [marker(NOTIFY_MARKER)]}],
        }
        self.assertIsNone(render_notify_properties(scanned_class("Game.Outer.Inner", outer, inner)))

    def test_to_pascal_case(self) -> None:
        self.assertEqual(to_pascal_case("_hp"), "Hp")
        self.assertEqual(to_pascal_case("max_hp"), "MaxHp")
        self.assertEqual(to_pascal_case("hpMax"), "HpMax")


class OutputDirectoryTest(unittest.TestCase):
    def test_write_check_and_remove_stale(self) -> None:
        fragments = [GeneratedFragment("A.g.cs", "a\n"), GeneratedFragment("B.g.cs", "b\n")]
        with tempfile.TemporaryDirectory() as tmpdir:
            output_dir = Path(tmpdir) / "generated"
            self.assertEqual(outdated_fragments(fragments, output_dir), ["A.g.cs", "B.g.cs"])
            self.assertEqual(stale_fragment_paths(fragments, output_dir), [])

            self.assertEqual(write_fragments(fragments, output_dir), (["A.g.cs", "B.g.cs"], []))
            self.assertEqual(write_fragments(fragments, output_dir), ([], []))

            (output_dir / "B.g.cs").write_text("edited\n", encoding="utf-8")
            (output_dir / "Old.g.cs").write_text("old\n", encoding="utf-8")
            (output_dir / "notes.txt").write_text("keep\n", encoding="utf-8")
            self.assertEqual(outdated_fragments(fragments, output_dir), ["B.g.cs"])
            self.assertEqual([path.name for path in stale_fragment_paths(fragments, output_dir)], ["Old.g.cs"])

            self.assertEqual(write_fragments(fragments, output_dir), (["B.g.cs"], ["Old.g.cs"]))
            self.assertEqual((output_dir / "B.g.cs").read_text(encoding="utf-8"), "b\n")
            self.assertTrue((output_dir / "notes.txt").is_file())


if __name__ == "__main__":
    unittest.main()
