from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer
from dotenv import find_dotenv, load_dotenv
from rich import print
from rich.markup import escape
from rich.table import Table

from .chats import ChatNegotiation, chat_stage
from .config import DEFAULT_STATE_FILE, DEMO_USERS, STATE_FILE_ENV
from .data_models import CoffeeChat, User
from .errors import MatchFoundryError
from .extraction import extract_needs_learnings, result_to_json
from .ingest import load_checkins_csv, load_users_csv
from .matcher import recompute_matches
from .reports import admin_overview, chats_for_user, matches_for_user
from .store import Store


app = typer.Typer(help="MatchFoundry CLI: founder help matching and coffee-chat scheduling")

STATE_OPTION = typer.Option(
	Path(DEFAULT_STATE_FILE),
	envvar=STATE_FILE_ENV,
	help="JSON state file",
)


@app.callback()
def _startup() -> None:
	# .env of the directory the command runs in
	load_dotenv(find_dotenv(usecwd=True))


@contextmanager
def _session(state: Path, write: bool = True) -> Iterator[Store]:
	"""Hold the state file for the whole command: load, yield the store, save on success.

	Concurrent commands on the same file run one after the other. Core errors
	exit with code 1.
	"""
	try:
		with Store.open(state) as store:
			yield store
			if write:
				store.save(state)
	except MatchFoundryError as e:
		print(f"[red]Error:[/red] {escape(str(e))}")
		raise typer.Exit(code=1)


def _print_chat(chat: CoffeeChat) -> None:
	print(f"[bold]Chat {chat.id}[/bold]  status={chat.status}  stage={chat_stage(chat)}")
	if chat.meeting_link:
		print(f"Meeting link: {chat.meeting_link}")
	if chat.proposed_slots:
		table = Table("slot_id", "start", "end", "status")
		for s in chat.proposed_slots:
			table.add_row(s.id, s.start_time.isoformat(), s.end_time.isoformat(), s.status)
		print(table)


@app.command()
def seed(state: Path = STATE_OPTION):
	"""Create the demo founder, expert and admin accounts (skips existing emails)."""
	with _session(state) as store:
		for u in DEMO_USERS:
			if store.find_user_by_email(u["email"]) is None:
				user = store.add_user(User(**u))
				print(f"[green]Added[/green] {user.name} ({user.role}) id={user.id}")


@app.command()
def users(state: Path = STATE_OPTION):
	"""List accounts in the order they were created (ids for the other commands)."""
	with _session(state, write=False) as store:
		table = Table("id", "name", "email", "role")
		for u in store.list_users():
			table.add_row(u.id, u.name, u.email, u.role)
		print(table)


@app.command()
def ingest(
	users_csv: Optional[Path] = typer.Option(None, help="CSV with name,email,role[,id]"),
	checkins_csv: Optional[Path] = typer.Option(None, help="CSV with user_id,kind,label,category"),
	state: Path = STATE_OPTION,
):
	"""Load users and/or check-ins from CSV exports."""
	with _session(state) as store:
		if users_csv:
			added = load_users_csv(users_csv, store)
			print(f"[green]Added {len(added)} users[/green] from {users_csv}")
		if checkins_csv:
			summary = load_checkins_csv(checkins_csv, store)
			for user_id, (n, l) in summary.items():
				print(f"Checked in {user_id}: {n} needs, {l} learnings")


@app.command()
def extract(text: str = typer.Argument(..., help="Weekly update text")):
	"""Extract needs and learnings from a weekly update (prints JSON)."""
	try:
		result = extract_needs_learnings(text)
	except MatchFoundryError as e:
		print(f"[red]Error:[/red] {escape(str(e))}")
		raise typer.Exit(code=1)
	typer.echo(result_to_json(result))


@app.command()
def checkin(
	user_id: str = typer.Argument(..., help="User checking in"),
	text: str = typer.Argument(..., help="Weekly update text"),
	state: Path = STATE_OPTION,
):
	"""Extract needs/learnings from TEXT and make them the user's active set."""
	with _session(state) as store:
		result = extract_needs_learnings(text)
		needs, learnings = store.check_in(user_id, result.needs, result.learnings)
		table = Table("kind", "label", "category")
		for n in needs:
			table.add_row("need", n.label, n.category)
		for l in learnings:
			table.add_row("learning", l.label, l.category)
		print(table)
		print(f"[green]Check-in saved[/green] (generation {store.current_generation(user_id)})")


@app.command()
def compute(state: Path = STATE_OPTION):
	"""Recompute all match suggestions from the active needs and learnings."""
	with _session(state) as store:
		def progress(needs_seen: int, kept: int) -> None:
			print(f"Scored {needs_seen} active needs")
		suggestions = recompute_matches(store, progress_fn=progress)
		print(f"[bold]Generated {len(suggestions)} suggestions[/bold]")
		for s in suggestions:
			print(f"{s.need_id} -> {s.expert_user_id}  (score={s.score:.3f})  {s.reason}")


@app.command()
def matches(
	user_id: str = typer.Argument(..., help="Whose dashboard to show"),
	role: str = typer.Option("founder", help="'founder' or 'expert'"),
	state: Path = STATE_OPTION,
):
	"""Show suggestions for a founder's needs, or incoming ones for an expert."""
	with _session(state, write=False) as store:
		df = matches_for_user(store, user_id, role)
		other = "expert_name" if role == "founder" else "requester_name"
		cols = ["id", "need_label", other, "score", "reason"]
		table = Table(*cols)
		for _, r in df.iterrows():
			table.add_row(*(f"{r[c]:.2f}" if c == "score" else str(r[c]) for c in cols))
		print(table)


@app.command("request-chat")
def request_chat(
	need_id: str = typer.Argument(...),
	requester_id: str = typer.Argument(...),
	expert_id: str = typer.Argument(...),
	state: Path = STATE_OPTION,
):
	"""Request a coffee chat with a suggested expert."""
	with _session(state) as store:
		chat = ChatNegotiation(store).create(need_id, requester_id, expert_id)
		print(f"[green]Coffee chat requested[/green] id={chat.id}. The expert will propose time slots.")


@app.command()
def propose(
	chat_id: str = typer.Argument(...),
	slot: List[str] = typer.Option(..., help="START,END in ISO-8601; repeat for several slots"),
	state: Path = STATE_OPTION,
):
	"""Propose candidate meeting slots for a chat."""
	slots = []
	for raw in slot:
		start, _, end = raw.partition(",")
		slots.append({"startTime": start.strip(), "endTime": end.strip()})
	with _session(state) as store:
		chat = ChatNegotiation(store).propose_slots(chat_id, slots)
		_print_chat(chat)


@app.command()
def select(
	chat_id: str = typer.Argument(...),
	slot_id: str = typer.Argument(...),
	state: Path = STATE_OPTION,
):
	"""Pick one of the proposed slots; the chat becomes scheduled."""
	with _session(state) as store:
		chat = ChatNegotiation(store).select_slot(chat_id, slot_id)
		print("[green]Coffee chat scheduled. Meeting link created.[/green]")
		_print_chat(chat)


@app.command()
def chats(
	user_id: str = typer.Argument(...),
	role: str = typer.Option("founder", help="'founder', 'expert' or 'admin'"),
	state: Path = STATE_OPTION,
):
	"""List a user's coffee chats, newest first."""
	with _session(state, write=False) as store:
		found = chats_for_user(store, user_id, role)
		if not found:
			print("No coffee chats yet.")
		for chat in found:
			_print_chat(chat)


@app.command()
def overview(state: Path = STATE_OPTION):
	"""Community health numbers for admins."""
	with _session(state, write=False) as store:
		ov = admin_overview(store)
		table = Table("metric", "value")
		table.add_row("Active needs", str(ov.active_needs_count))
		table.add_row("Active learnings", str(ov.active_learnings_count))
		table.add_row("Match suggestions", str(ov.match_suggestions_count))
		table.add_row("Coffee chats scheduled", str(ov.scheduled_chats_count))
		print(table)
		by_cat = Table("category", "needs", "learnings")
		needs = {c.category: c.count for c in ov.needs_by_category}
		learnings = {c.category: c.count for c in ov.learnings_by_category}
		for cat in sorted(set(needs) | set(learnings)):
			by_cat.add_row(cat, str(needs.get(cat, 0)), str(learnings.get(cat, 0)))
		print(by_cat)


if __name__ == "__main__":
	app()
