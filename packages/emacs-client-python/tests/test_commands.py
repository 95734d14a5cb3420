"""session/commands.py：命令流的 token 顺序与转义。"""

from __future__ import annotations

from typing import List, Optional

from emacs_client.session.commands import CommandWriter, is_position_argument, write_attempt, write_preamble
from emacs_client.session.intent import RetryState, SessionIntent, build_intent
from emacs_client.session.terminal import TerminalInfo


class _Sink:
    """收集写出的文本。"""

    def __init__(self) -> None:
        """初始化。"""

        self.parts: List[str] = []

    def send(self, data: str) -> None:
        """追加一段文本。"""

        self.parts.append(data)

    @property
    def text(self) -> str:
        """全部文本。"""

        return "".join(self.parts)


def _stream(
    intent: SessionIntent,
    *,
    terminal: Optional[TerminalInfo] = None,
    eval_lines: Optional[List[str]] = None,
) -> str:
    sink = _Sink()
    writer = CommandWriter(sink)
    write_preamble(writer, intent)
    write_attempt(writer, intent, RetryState.from_intent(intent), terminal=terminal, eval_lines=eval_lines)
    return sink.text


def test_single_file_in_current_frame() -> None:
    intent = build_intent(cwd="/home/u/proj", arguments=["notes.txt"], environ={})
    assert _stream(intent) == "-dir /home/u/proj/ -current-frame -file notes.txt \n"


def test_position_argument_precedes_file() -> None:
    intent = build_intent(cwd="/home/u/proj", arguments=["+42:7", "notes.txt"], environ={})
    assert _stream(intent) == "-dir /home/u/proj/ -current-frame -position +42:7 -file notes.txt \n"


def test_position_detection() -> None:
    assert is_position_argument("+42")
    assert is_position_argument("+42:7")
    assert not is_position_argument("+notes")
    assert not is_position_argument("42")


def test_arguments_are_quoted() -> None:
    intent = build_intent(cwd="/home/u/my proj", arguments=["-odd name.txt"], nowait=True, environ={})
    assert _stream(intent) == "-dir /home/u/my&_proj/ -nowait -current-frame -file &-odd&_name.txt \n"


def test_tramp_prefix_applies_to_dir_and_absolute_files() -> None:
    intent = build_intent(
        cwd="/home/u", arguments=["/etc/hosts", "rel.txt"], tramp_prefix="/ssh:box:", environ={}
    )
    assert _stream(intent) == (
        "-dir /ssh:box:/home/u/ -current-frame -file /ssh:box:/etc/hosts -file rel.txt \n"
    )


def test_eval_arguments() -> None:
    intent = build_intent(cwd="/x", arguments=["(+ 1 2)", "(message \"hi\")"], eval=True, environ={})
    assert _stream(intent) == '-dir /x/ -current-frame -eval (+&_1&_2) -eval (message&_"hi") \n'


def test_eval_lines_from_stdin() -> None:
    intent = build_intent(cwd="/x", eval=True, environ={})
    assert _stream(intent, eval_lines=["(+ 1 2)\n"]) == "-dir /x/ -current-frame -eval (+&_1&_2)&n \n"


def test_tty_frame_with_environment() -> None:
    intent = build_intent(cwd="/x", tty=True, frame_parameters="((width . 80))", environ={"TERM": "xterm"})
    stream = _stream(intent, terminal=TerminalInfo(name="/dev/pts/3", type="xterm"))

    assert stream == (
        "-env TERM=xterm -dir /x/ "
        "-frame-parameters ((width&_.&_80)) -tty /dev/pts/3 xterm \n"
    )


def test_graphical_frame_requests_window_system() -> None:
    intent = build_intent(cwd="/x", create_frame=True, parent_id="0x42", environ={"DISPLAY": ":0"})
    stream = _stream(intent)

    assert stream == "-env DISPLAY=:0 -dir /x/ -display :0 -parent-id 0x42 -window-system \n"


def test_frame_parameters_ignored_without_new_frame() -> None:
    intent = build_intent(cwd="/x", arguments=["a"], frame_parameters="((x . 1))", environ={})
    assert "-frame-parameters" not in _stream(intent)
