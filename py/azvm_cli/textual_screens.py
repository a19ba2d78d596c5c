"""Modal screens backing the Textual prompt surface.

Each screen dismisses with the user's answer, or ``None`` when the user
backs out, which the prompt surface turns into a cancellation.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, ClassVar

from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, OptionList, Static

from azvm_cli.textual_widgets import RequiredValidator

if TYPE_CHECKING:
    from textual.app import ComposeResult
else:
    from collections.abc import Generator as ComposeResult


class PromptScreen(ModalScreen[str | None]):
    """Base screen for prompts; Escape dismisses without an answer."""

    BINDINGS: ClassVar[list[tuple[str, str, str]]] = [("escape", "dismiss_prompt", "Cancel")]

    def action_dismiss_prompt(self) -> None:
        self.dismiss(None)


class PickScreen(PromptScreen):
    """Choose one entry from a list."""

    def __init__(self, placeholder: str, items: Sequence[str]) -> None:
        super().__init__()
        self.placeholder = placeholder
        self.items = list(items)

    def compose(self) -> ComposeResult:
        with Vertical(classes="dialog"):
            yield Label(self.placeholder, classes="title")
            yield OptionList(*self.items, id="choices")

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        self.dismiss(self.items[event.option_index])


class InputScreen(PromptScreen):
    """Ask for a non-empty line of text."""

    def __init__(self, prompt: str, default: str | None = None) -> None:
        super().__init__()
        self.prompt = prompt
        self.default = default or ""

    def compose(self) -> ComposeResult:
        with Vertical(classes="dialog"):
            yield Label(self.prompt, classes="title")
            yield Input(value=self.default, validators=[RequiredValidator()], id="answer")

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.validation_result is not None and not event.validation_result.is_valid:
            self.notify(event.validation_result.failure_descriptions[0], severity="warning")
            return
        self.dismiss(event.value.strip())


class ConfirmScreen(PromptScreen):
    """Warning message with one button per action plus Cancel."""

    def __init__(self, message: str, actions: Sequence[str]) -> None:
        super().__init__()
        self.message = message
        self.actions = list(actions)

    def compose(self) -> ComposeResult:
        with Vertical(classes="dialog"):
            yield Static(self.message, classes="notice")
            with Horizontal(classes="buttons"):
                for index, action in enumerate(self.actions):
                    yield Button(action, id=f"action_{index}", variant="error" if index == 0 else "primary")
                yield Button("Cancel", id="cancel_button", variant="default")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        button_id = event.button.id or ""
        if button_id.startswith("action_"):
            self.dismiss(self.actions[int(button_id.removeprefix("action_"))])
        else:
            self.dismiss(None)


class TextScreen(PromptScreen):
    """Read-only text such as resource properties."""

    def __init__(self, title: str, text: str) -> None:
        super().__init__()
        self.heading = title
        self.text = text

    def compose(self) -> ComposeResult:
        with Vertical(classes="dialog"):
            yield Label(self.heading, classes="title")
            with VerticalScroll():
                yield Static(self.text, markup=False)
            yield Button("Close", id="close_button", variant="primary")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss("closed")
