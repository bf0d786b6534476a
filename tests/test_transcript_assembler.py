from itertools import permutations

from ent_scribe.models.domain import Empty, Fatal, Ignorable, Text
from ent_scribe.services.transcript_assembler import TranscriptAssembler


def test_completion_order_does_not_change_final_text() -> None:
    outcomes = {
        0: Text("patient reports pain"),
        1: Text("vitals stable"),
        2: Empty(),
        3: Text("  follow up in two weeks "),
    }
    expected = "patient reports pain vitals stable follow up in two weeks"

    for order in permutations(outcomes):
        assembler = TranscriptAssembler()
        for sequence in order:
            assembler.append(sequence, outcomes[sequence])
        assert assembler.final_text() == expected


def test_empty_and_ignorable_keep_their_slot() -> None:
    assembler = TranscriptAssembler()
    assembler.append(2, Text("third"))
    assembler.append(0, Ignorable("Audio too short"))
    assembler.append(1, Empty())

    assert [f.sequence for f in assembler.fragments] == [0, 1, 2]
    assert [f.text for f in assembler.fragments] == ["", "", "third"]
    assert assembler.final_text() == "third"


def test_fatal_outcome_leaves_a_gap() -> None:
    assembler = TranscriptAssembler()
    assert assembler.append(0, Text("first")) is True
    assert assembler.append(1, Fatal("internal error", 500)) is False
    assembler.append(2, Text("third"))

    assert len(assembler) == 2
    assert [f.sequence for f in assembler.fragments] == [0, 2]
    assert assembler.final_text() == "first third"


def test_sequence_is_unique() -> None:
    assembler = TranscriptAssembler()
    assembler.append(0, Text("original"))
    assert assembler.append(0, Text("duplicate")) is False
    assert assembler.final_text() == "original"


def test_live_text_before_all_chunks_arrive() -> None:
    assembler = TranscriptAssembler()
    assert assembler.live_text() == ""
    assembler.append(1, Text("vitals stable"))
    assert assembler.live_text() == "vitals stable"
    assembler.append(0, Text("patient reports pain"))
    assert assembler.live_text() == "patient reports pain vitals stable"


def test_final_text_is_trimmed() -> None:
    assembler = TranscriptAssembler()
    assembler.append(0, Text("  leading"))
    assembler.append(1, Text("trailing  "))
    assert assembler.final_text() == "leading trailing"


def test_padded_fragments_join_with_single_spaces():
    assembler = TranscriptAssembler()
    assembler.append(1, Text("  follow up in two weeks "))
    assembler.append(0, Text("vitals stable\n"))
    assembler.append(2, Text("   "))

    assert assembler.live_text() == "vitals stable follow up in two weeks"
    assert [f.text for f in assembler.fragments] == ["vitals stable", "follow up in two weeks", ""]
