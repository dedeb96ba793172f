from pathlib import Path

from subscriptions.events import EventJournal, NewAccess, TransferSingle, URI


def test_journal_filters_and_reloads(tmp_path: Path):
    path = tmp_path / "events.log"
    journal = EventJournal(path)
    journal.emit(
        NewAccess(
            content_id=3,
            service_provider="0x" + "22" * 20,
            unit_validity=60,
            unit_fee=10**24,
            holder="0x" + "a1" * 20,
            royalty_rate=5,
            name="Daily",
        )
    )
    journal.emit(TransferSingle("0x" + "a1" * 20, "0x" + "a1" * 20, "0x" + "b2" * 20, 3, 1, royalty=7))
    journal.emit(URI(value="ipfs://other", content_id=4))

    assert [entry["event"] for entry in journal.entries(content_id=3)] == ["NewAccess", "TransferSingle"]
    assert journal.entries(event="NewAccess")[0]["unit_fee"] == str(10**24)
    assert journal.entries(limit=1)[0]["event"] == "URI"

    reloaded = EventJournal(path)
    assert len(reloaded.entries()) == 3
    assert reloaded.entries(event="TransferSingle")[0]["royalty"] == "7"


def test_journal_keeps_bounded_history():
    journal = EventJournal(max_in_memory=2)
    for content_id in range(5):
        journal.emit(URI(value=f"ipfs://{content_id}", content_id=content_id))

    assert [entry["content_id"] for entry in journal.entries()] == ["3", "4"]
