#!/usr/bin/env python3
"""
hc - Hypercerts command line client

    hc account login -u alice.example.com -p app-password
    hc activity ls
    hc activity get 3kabc --all
    hc activity delete 3kabc 3kdef
    hc measurement create --activity 3kabc --metric trees --value 1200
    hc measurement ls --activity 3kabc
    hc get at://did:plc:xyz/org.hypercerts.claim.activity/3kabc
"""

import argparse
import sys
from typing import Callable, List, Optional

from rich.console import Console

from hypercerts import __version__
from hypercerts.atproto import collections as nsid
from hypercerts.atproto.client import RepositoryClient
from hypercerts.atproto.session import (
    login, save_login, login_or_load, wipe_session, resolve_pds, resolve_did_document,
)
from hypercerts.atproto.uri import parse_record_uri, resolve_record_uri, extract_rkey, is_did
from hypercerts.core.backlinks import LocalBacklinkIndex, RemoteBacklinkIndex, SUBJECT
from hypercerts.core.cascade_delete import CascadeDeleteEngine
from hypercerts.core.config import HypercertsConfig
from hypercerts.core.confirm import Confirmer, AutoConfirmer
from hypercerts.core.error_handler import ErrorHandler, HypercertsError, ConfigurationError
from hypercerts.core.hc_logger import set_log_level, repo_logger
from hypercerts.core.link_context import LinkContextAssembler, ContextOptions, requested_categories
from hypercerts.core.records import RECORD_TYPES, RecordType
from hypercerts.core.record_writer import (
    RecordWriter, split_list, parse_score,
    activity_fields, measurement_fields, attachment_fields, evaluation_fields,
)
from hypercerts.core.ui_handler import UIHandler


class UsageError(HypercertsError):
    """Missing or invalid command line arguments"""
    pass


class HcApp:
    """Command implementations; collaborators are injectable for tests"""

    def __init__(self, console: Optional[Console] = None, confirmer=None,
                 client_factory: Optional[Callable] = None,
                 anon_client_factory: Optional[Callable] = None,
                 remote_index: Optional[RemoteBacklinkIndex] = None,
                 identity_resolver: Optional[Callable] = None,
                 error_console: Optional[Console] = None):
        self.console = console or Console()
        # errors go to stderr unless a test hands in one console for both
        self.error_console = error_console or (console if console else Console(stderr=True))
        self.ui = UIHandler(self.console)
        self.confirmer = confirmer or Confirmer(self.console)
        self.client_factory = client_factory or login_or_load
        self.anon_client_factory = anon_client_factory or (lambda pds, did: RepositoryClient(pds, did))
        self.remote_index = remote_index
        self.identity_resolver = identity_resolver or resolve_pds
        self.args = None

    # ===== Helpers =====

    def client(self):
        return self.client_factory(self.args.username, self.args.password, self.args.plc_host)

    def _confirmer(self, force: bool):
        return AutoConfirmer(True) if force else self.confirmer

    def _anon_client(self, identifier: str):
        did, pds = self.identity_resolver(identifier, self.args.plc_host)
        return self.anon_client_factory(pds, did), did

    # ===== account =====

    def account_login(self, args):
        username = args.login_username or HypercertsConfig.USERNAME
        password = args.login_password or HypercertsConfig.PASSWORD
        if not username or not password:
            raise UsageError("usage: hc account login -u <handle> -p <app-password>")
        client = login(username, password, pds_host=args.pds_host, plc_host=args.plc_host)
        info = client.get_session()
        client.handle = info.get("handle", client.handle)
        save_login(client, password)
        self.ui.show_line(f"Logged in as {client.handle} ({client.did})")

    def account_logout(self, args):
        wipe_session()
        self.ui.show_line("Logged out")

    def account_status(self, args):
        client = self.client()
        info = client.get_session()
        self.ui.show_account({
            "DID": info.get("did", client.did),
            "Handle": info.get("handle", ""),
            "PDS": client.host,
        })

    # ===== unauthenticated reads =====

    def record_get(self, args):
        ref = parse_record_uri(args.uri)
        client, did = self._anon_client(ref.owner)
        value, _ = client.get_record(did, ref.collection, ref.rkey)
        self.ui.show_json(value)

    def record_list(self, args):
        client, did = self._anon_client(args.identifier)
        collections = client.describe_repo(did).get("collections") or []
        if args.collections:
            for name in collections:
                self.ui.show_line(name)
            return
        if args.collection:
            collections = [args.collection]
        for name in collections:
            for entry in client.list_all_records(did, name):
                self.ui.show_line(f"{name}\t{extract_rkey(entry.uri)}\t{entry.cid}")

    def resolve(self, args):
        did, pds = self.identity_resolver(args.identifier, args.plc_host)
        if args.did:
            self.ui.show_line(did)
            return
        self.ui.show_json(resolve_did_document(did, args.plc_host))

    # ===== activity =====

    def activity_list(self, args):
        client = self.client()
        entries = client.list_all_records(client.did, nsid.COLLECTION_ACTIVITY)
        counts = LocalBacklinkIndex(client).count_references(client.did, nsid.COLLECTION_MEASUREMENT, SUBJECT)
        if args.json:
            items = []
            for e in entries:
                item = {"uri": e.uri, "activity": e.value}
                if counts.get(e.uri, 0) > 0:
                    item["measurementCount"] = counts[e.uri]
                items.append(item)
            self.ui.show_json(items)
            return
        self.ui.show_records(RECORD_TYPES["activity"], entries,
                             extra_columns={"MEASUREMENTS": {e.uri: counts.get(e.uri, 0) for e in entries}})

    def activity_get(self, args):
        client = self.client()
        uri = resolve_record_uri(client.did, nsid.COLLECTION_ACTIVITY, args.id)
        categories = requested_categories(args.measurements, args.attachments, args.evaluations,
                                          args.collections, args.all)
        options = ContextOptions(categories=categories, include_bodies=not args.no_bodies)
        assembler = LinkContextAssembler(client, remote_index=self.remote_index)
        view = assembler.assemble_context(uri, options)

        if not options.categories or args.json:
            self.ui.show_json(view.to_dict("activity"))
            return
        self.ui.show_context(view, include_bodies=options.include_bodies)

    def activity_delete(self, args):
        if not args.ids:
            raise UsageError("usage: hc activity delete <id|at-uri>...")
        client = self.client()
        uris = [resolve_record_uri(client.did, nsid.COLLECTION_ACTIVITY, i) for i in args.ids]
        engine = CascadeDeleteEngine(client, confirmer=self._confirmer(args.force), console=self.console)
        if len(uris) == 1:
            engine.delete_with_cascade(client.did, uris[0], force=args.force)
        else:
            engine.delete_many(client.did, uris)

    # ===== create / edit =====

    def _activity_ref(self, writer: RecordWriter, client, id_or_uri: str):
        return writer.strong_ref(resolve_record_uri(client.did, nsid.COLLECTION_ACTIVITY, id_or_uri))

    def _created(self, record_type: RecordType, uri: str):
        self.ui.show_line(f"Created {record_type.label}: {uri}")

    def activity_create(self, args):
        if not args.title or not args.description:
            raise UsageError("usage: hc activity create --title <title> --description <text>")
        fields = activity_fields(args.title, args.description, args.start_date, args.end_date, args.work_scope)
        client = self.client()
        uri, _ = RecordWriter(client).create(nsid.COLLECTION_ACTIVITY, fields)
        self._created(RECORD_TYPES["activity"], uri)

    def measurement_create(self, args):
        if not args.activity or not args.value:
            raise UsageError("usage: hc measurement create --activity <id> --value <value>")
        fields = measurement_fields(args.metric, args.unit, args.value, args.start_date, args.end_date,
                                    args.method_type)
        client = self.client()
        writer = RecordWriter(client)
        fields["subject"] = self._activity_ref(writer, client, args.activity)
        uri, _ = writer.create(nsid.COLLECTION_MEASUREMENT, fields)
        self._created(RECORD_TYPES["measurement"], uri)

    def attachment_create(self, args):
        content = split_list(args.uri)
        if not args.title or not content:
            raise UsageError("usage: hc attachment create --title <title> --uri <url>[,<url>...]")
        fields = attachment_fields(args.title, args.content_type, content)
        client = self.client()
        writer = RecordWriter(client)
        subjects = [self._activity_ref(writer, client, a) for a in split_list(args.activity)]
        if subjects:
            fields["subjects"] = subjects
        uri, _ = writer.create(nsid.COLLECTION_ATTACHMENT, fields)
        self._created(RECORD_TYPES["attachment"], uri)

    def evaluation_create(self, args):
        if not args.activity or not args.summary:
            raise UsageError("usage: hc evaluation create --activity <id> --summary <text>")
        score = parse_score(args.score, args.score_min, args.score_max)
        client = self.client()
        writer = RecordWriter(client)
        fields = evaluation_fields(args.summary, split_list(args.evaluator) or [client.did], score)
        fields["subject"] = self._activity_ref(writer, client, args.activity)
        uri, _ = writer.create(nsid.COLLECTION_EVALUATION, fields)
        self._created(RECORD_TYPES["evaluation"], uri)

    def record_edit(self, record_type: RecordType, fields: dict, args):
        client = self.client()
        uri = resolve_record_uri(client.did, record_type.collection, args.id)
        updated = RecordWriter(client).edit(uri, fields)
        if updated is None:
            self.ui.show_line("No changes.")
            return
        self.ui.show_line(f"Updated {record_type.label}: {updated}")

    def activity_edit(self, args):
        fields = activity_fields(args.title, args.description, args.start_date, args.end_date, args.work_scope)
        self.record_edit(RECORD_TYPES["activity"], fields, args)

    def measurement_edit(self, args):
        fields = measurement_fields(args.metric, args.unit, args.value, args.start_date, args.end_date,
                                    args.method_type)
        self.record_edit(RECORD_TYPES["measurement"], fields, args)

    def attachment_edit(self, args):
        self.record_edit(RECORD_TYPES["attachment"], attachment_fields(args.title, args.content_type), args)

    def evaluation_edit(self, args):
        score = parse_score(args.score, args.score_min, args.score_max)
        self.record_edit(RECORD_TYPES["evaluation"], evaluation_fields(args.summary, score=score), args)

    # ===== other record types =====

    def type_list(self, record_type: RecordType, args):
        client = self.client()
        entries = client.list_all_records(client.did, record_type.collection)
        activity = getattr(args, "activity", None)
        if activity:
            target = resolve_record_uri(client.did, nsid.COLLECTION_ACTIVITY, activity)
            entries = [e for e in entries if record_type.activity_link.matches(e.value, target)]

        if args.json:
            self.ui.show_json([{"uri": e.uri, "record": e.value} for e in entries])
            return
        self.ui.show_records(record_type, entries)

    def type_get(self, record_type: RecordType, args):
        client = self.client()
        uri = resolve_record_uri(client.did, record_type.collection, args.id)
        ref = parse_record_uri(uri)
        owner = ref.owner if is_did(ref.owner) else client.did
        value, cid = client.get_record(owner, ref.collection, ref.rkey)
        self.ui.show_json({"uri": uri, "cid": cid, "record": value})

    def type_delete(self, record_type: RecordType, args):
        if not args.ids:
            raise UsageError(f"usage: hc {record_type.name} delete <id|at-uri>...")
        client = self.client()
        uris = [resolve_record_uri(client.did, record_type.collection, i) for i in args.ids]
        confirmer = self._confirmer(args.force)

        if len(uris) == 1:
            if not confirmer.confirm(f"Delete {record_type.label} {extract_rkey(uris[0])}?"):
                self.ui.show_line("Aborted.")
                return
            ref = parse_record_uri(uris[0])
            client.delete_record(client.did, ref.collection, ref.rkey)
            self.ui.show_line(f"Deleted {record_type.label}: {ref.rkey}")
            return

        if not confirmer.confirm_bulk(f"Delete {len(uris)} {record_type.label} records?", len(uris)):
            self.ui.show_line("Aborted.")
            return
        for uri in uris:
            try:
                ref = parse_record_uri(uri)
                client.delete_record(client.did, ref.collection, ref.rkey)
            except HypercertsError as e:
                self.ui.show_warning(str(e))
                continue
            self.ui.show_line(f"Deleted {record_type.label}: {ref.rkey}")


# ===== Parser =====

def _add_type_commands(sub, app: HcApp, record_type: RecordType, aliases: List[str]):
    parser = sub.add_parser(record_type.name, aliases=aliases, help=f"manage {record_type.label} records")
    actions = parser.add_subparsers(dest="action", metavar="<action>")
    actions.required = True

    ls = actions.add_parser("ls", aliases=["list"], help=f"list {record_type.label} records")
    ls.add_argument("--json", action="store_true", help="output as JSON")
    if record_type.activity_link is not None:
        ls.add_argument("--activity", help="filter by activity ID or AT-URI")
    ls.set_defaults(func=lambda a: app.type_list(record_type, a))

    get = actions.add_parser("get", help=f"get {record_type.label} details")
    get.add_argument("id", help="record key or AT-URI")
    get.set_defaults(func=lambda a: app.type_get(record_type, a))

    delete = actions.add_parser("delete", help=f"delete {record_type.label} record(s)")
    delete.add_argument("ids", nargs="*", help="record keys or AT-URIs")
    delete.add_argument("-f", "--force", action="store_true", help="skip confirmation")
    delete.set_defaults(func=lambda a: app.type_delete(record_type, a))

    if record_type.name in WRITE_FLAGS:
        _add_write_commands(actions, app, record_type)


# ===== create / edit flags =====

def _activity_flags(parser, creating: bool):
    parser.add_argument("--title", help="activity title")
    parser.add_argument("--description", help="short description")
    parser.add_argument("--start-date", help="start date (YYYY-MM-DD or RFC3339)")
    parser.add_argument("--end-date", help="end date (YYYY-MM-DD or RFC3339)")
    parser.add_argument("--work-scope", help="work scope")


def _measurement_flags(parser, creating: bool):
    if creating:
        parser.add_argument("--activity", help="activity ID or AT-URI being measured")
    parser.add_argument("--metric", help="what is measured")
    parser.add_argument("--unit", help="unit of the value")
    parser.add_argument("--value", help="measured value")
    parser.add_argument("--start-date", help="start of the measured period")
    parser.add_argument("--end-date", help="end of the measured period")
    parser.add_argument("--method-type", help="measurement method")


def _attachment_flags(parser, creating: bool):
    if creating:
        parser.add_argument("--activity", help="comma-separated activity IDs or AT-URIs")
        parser.add_argument("--uri", help="comma-separated content URLs")
    parser.add_argument("--title", help="attachment title")
    parser.add_argument("--content-type", help="content type, e.g. image/jpeg")


def _evaluation_flags(parser, creating: bool):
    if creating:
        parser.add_argument("--activity", help="activity ID or AT-URI being evaluated")
        parser.add_argument("--evaluator", help="comma-separated evaluator DIDs (default: you)")
    parser.add_argument("--summary", help="evaluation summary")
    parser.add_argument("--score", help="score value")
    parser.add_argument("--score-min", help="score minimum (default 0)")
    parser.add_argument("--score-max", help="score maximum (default 10)")


WRITE_FLAGS = {
    "activity": _activity_flags,
    "measurement": _measurement_flags,
    "attachment": _attachment_flags,
    "evaluation": _evaluation_flags,
}


def _add_write_commands(actions, app: HcApp, record_type: RecordType):
    add_flags = WRITE_FLAGS[record_type.name]

    create = actions.add_parser("create", aliases=["new"], help=f"create a {record_type.label} record")
    add_flags(create, True)
    create.set_defaults(func=getattr(app, f"{record_type.name}_create"))

    edit = actions.add_parser("edit", help=f"edit a {record_type.label} record")
    edit.add_argument("id", help="record key or AT-URI")
    add_flags(edit, False)
    edit.set_defaults(func=getattr(app, f"{record_type.name}_edit"))


TYPE_ALIASES = {
    "measurement": ["meas"],
    "attachment": ["attach"],
    "evaluation": ["eval"],
    "collection": ["coll"],
    "rights": [],
    "location": ["loc"],
    "contributor": ["contrib"],
    "funding": [],
    "workscope": ["ws"],
}


def build_parser(app: HcApp) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hc", description="Hypercerts CLI - manage impact claims on ATProto")
    parser.add_argument("--version", action="version", version=f"hc {__version__}")
    parser.add_argument("--log-level", default=HypercertsConfig.LOG_LEVEL,
                        help="log verbosity (error, warn, info, debug)")
    parser.add_argument("--plc-host", default=HypercertsConfig.PLC_HOST, help="PLC directory URL")
    parser.add_argument("--username", default="", help="handle or DID (ephemeral auth)")
    parser.add_argument("--password", default="", help="app password (ephemeral auth)")
    sub = parser.add_subparsers(dest="command", metavar="<command>")
    sub.required = True

    get = sub.add_parser("get", help="get a record by AT-URI")
    get.add_argument("uri")
    get.set_defaults(func=app.record_get)

    ls = sub.add_parser("ls", aliases=["list"], help="list records for an account")
    ls.add_argument("identifier", help="handle or DID")
    ls.add_argument("--collection", help="filter by collection NSID")
    ls.add_argument("-c", "--collections", action="store_true", help="list collection names only")
    ls.set_defaults(func=app.record_list)

    resolve = sub.add_parser("resolve", help="lookup identity metadata (DID document)")
    resolve.add_argument("identifier", help="handle or DID")
    resolve.add_argument("-d", "--did", action="store_true", help="just resolve to DID")
    resolve.set_defaults(func=app.resolve)

    account = sub.add_parser("account", help="auth session and account management")
    account_actions = account.add_subparsers(dest="action", metavar="<action>")
    account_actions.required = True
    account_login = account_actions.add_parser("login", help="create session with PDS")
    account_login.add_argument("-u", "--username", dest="login_username", default="", help="handle or DID")
    account_login.add_argument("-p", "--password", dest="login_password", default="", help="app password")
    account_login.add_argument("--pds-host", default=HypercertsConfig.PDS_HOST, help="override PDS URL")
    account_login.set_defaults(func=app.account_login)
    account_actions.add_parser("logout", help="delete current session").set_defaults(func=app.account_logout)
    account_actions.add_parser("status", help="check auth and account status").set_defaults(func=app.account_status)

    activity = sub.add_parser("activity", help="manage hypercert activities")
    activity_actions = activity.add_subparsers(dest="action", metavar="<action>")
    activity_actions.required = True

    activity_ls = activity_actions.add_parser("ls", aliases=["list"], help="list activities")
    activity_ls.add_argument("--json", action="store_true", help="output as JSON")
    activity_ls.set_defaults(func=app.activity_list)

    activity_get = activity_actions.add_parser("get", help="get activity details with backlinked records")
    activity_get.add_argument("id", help="record key or AT-URI")
    activity_get.add_argument("-m", "--measurements", action="store_true", help="show backlinked measurements")
    activity_get.add_argument("-a", "--attachments", action="store_true", help="show backlinked attachments")
    activity_get.add_argument("-e", "--evaluations", action="store_true", help="show backlinked evaluations")
    activity_get.add_argument("-c", "--collections", action="store_true", help="show containing collections")
    activity_get.add_argument("--all", action="store_true", help="show all backlinked records")
    activity_get.add_argument("--json", action="store_true", help="output as JSON")
    activity_get.add_argument("--no-bodies", action="store_true", help="list linked URIs without fetching records")
    activity_get.set_defaults(func=app.activity_get)

    activity_delete = activity_actions.add_parser("delete", help="delete activity and linked records")
    activity_delete.add_argument("ids", nargs="*", help="record keys or AT-URIs")
    activity_delete.add_argument("-f", "--force", action="store_true", help="skip confirmation")
    activity_delete.set_defaults(func=app.activity_delete)

    _add_write_commands(activity_actions, app, RECORD_TYPES["activity"])

    for name, aliases in TYPE_ALIASES.items():
        _add_type_commands(sub, app, RECORD_TYPES[name], aliases)

    return parser


def main(argv: Optional[List[str]] = None, app: Optional[HcApp] = None) -> int:
    app = app or HcApp()
    parser = build_parser(app)
    args = parser.parse_args(argv)
    app.args = args
    set_log_level(args.log_level)

    error_handler = ErrorHandler(console=app.error_console)
    issues = HypercertsConfig.validate_config()
    if issues:
        error_handler.handle_error(ConfigurationError(issues), operation=args.command)
        return 1
    repo_logger.log_debug("CONFIG", "network settings", HypercertsConfig.get_network_config())

    try:
        args.func(args)
    except HypercertsError as e:
        error_handler.handle_error(e, operation=args.command)
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
