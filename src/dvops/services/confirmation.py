"""Operator confirmation capability."""

from typing import Dict, List, Optional, Sequence, Tuple, Union

from rich.console import Console
from rich.prompt import Confirm, Prompt

Answer = Union[bool, str]


class ConsoleConfirmation:
    """Asks the operator on the terminal."""

    def __init__(self, console: Console):
        self.console = console

    def confirm(self, question: str, default: bool = False) -> bool:
        return Confirm.ask(question, default=default, console=self.console)

    def ask(self, question: str, default: str = "") -> str:
        answer = Prompt.ask(question, default=default, console=self.console)
        return (answer or default).strip()


class CannedConfirmation:
    """Answers prompts from a preset script, for unattended runs and tests.

    ``answers`` maps a substring of the question to the answer; a sequence is
    consumed in order. Unmatched questions get the prompt's default.
    """

    def __init__(self, answers: Optional[Union[Dict[str, Answer], Sequence[Answer]]] = None):
        self._by_question: Dict[str, Answer] = {}
        self._queue: List[Answer] = []
        if isinstance(answers, dict):
            self._by_question = dict(answers)
        elif answers:
            self._queue = list(answers)
        self.asked: List[Tuple[str, Answer]] = []

    def confirm(self, question: str, default: bool = False) -> bool:
        answer = bool(self._answer(question, default))
        self.asked.append((question, answer))
        return answer

    def ask(self, question: str, default: str = "") -> str:
        answer = str(self._answer(question, default) or default)
        self.asked.append((question, answer))
        return answer

    def _answer(self, question: str, default: Answer) -> Answer:
        for fragment, answer in self._by_question.items():
            if fragment in question:
                return answer
        if self._queue:
            return self._queue.pop(0)
        return default
