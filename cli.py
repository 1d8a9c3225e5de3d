#!/usr/bin/env python3
"""
DarkJS Hunter CLI - client-side secret and endpoint discovery.
Crawls a page's scripts, modules and sourcemaps, stores findings per subject, and exports them.
"""

import asyncio
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from colorama import init, Fore, Style
init(autoreset=True)

from darkjs.core.config import SettingsManager, get_default_config
from darkjs.core.errors import PageSourceError
from darkjs.core.logger import logger, set_verbose, set_silent
from darkjs.core.normalizer import normalize_input, subject_id_for
from darkjs.collectors.page_source import load_snapshot_file
from darkjs.models import NodeState
from darkjs.output.exporter import ReportExporter, compute_stats, dedupe_findings, flatten_records, select_rows
from darkjs.scan_engine import ScanEngine
from darkjs.services.datastore import AggregationStore, JsonFileStore, SettingsStore


VERSION = "1.0.0"

SETTING_FLAGS = {
    'dom': 'enable_dom',
    'storage': 'enable_storage',
    'sourcemaps': 'enable_source_maps',
    'network': 'enable_network',
    'runtime': 'enable_runtime',
}


def print_banner():
    banner = """
""" + Fore.CYAN + """╔═══════════════════════════════════════════════════════════╗
║                                                           ║
║   """ + Fore.WHITE + """██████╗  █████╗ ██████╗ ██╗  ██╗     ██╗███████╗     """ + Fore.CYAN + """║
║   """ + Fore.WHITE + """██╔══██╗██╔══██╗██╔══██╗██║ ██╔╝     ██║██╔════╝     """ + Fore.CYAN + """║
║   """ + Fore.WHITE + """██║  ██║███████║██████╔╝█████╔╝      ██║███████╗     """ + Fore.CYAN + """║
║   """ + Fore.WHITE + """██║  ██║██╔══██║██╔══██╗██╔═██╗ ██   ██║╚════██║     """ + Fore.CYAN + """║
║   """ + Fore.WHITE + """██████╔╝██║  ██║██║  ██║██║  ██╗╚█████╔╝███████║     """ + Fore.CYAN + """║
║   """ + Fore.WHITE + """╚═════╝ ╚═╝  ╚═╝╚═╝  ╚═╝╚═╝  ╚═╝ ╚════╝ ╚══════╝     """ + Fore.CYAN + """║
║                                                           ║
║   """ + Fore.GREEN + """Client-side Secret & Endpoint Hunter v""" + VERSION + """              """ + Fore.CYAN + """║
║   """ + Fore.WHITE + """For authorized security testing only                """ + Fore.CYAN + """║
║                                                           ║
╚═══════════════════════════════════════════════════════════╝
""" + Style.RESET_ALL

    print(banner, flush=True)


def show_help():
    print(f"""
{Fore.CYAN}Usage:{Style.RESET_ALL}
    python cli.py <command> [args] [options]

{Fore.CYAN}Commands:{Style.RESET_ALL}
    {Fore.GREEN}scan{Style.RESET_ALL} <url>                 Crawl a page and store its findings
    {Fore.GREEN}event{Style.RESET_ALL} <subject> <url>      Record an observed network/runtime request
    {Fore.GREEN}show{Style.RESET_ALL} [subject]             Print stored findings
    {Fore.GREEN}export{Style.RESET_ALL} [subject]           Export findings as CSV or JSON
    {Fore.GREEN}settings{Style.RESET_ALL}                   Show or change scan settings
    {Fore.GREEN}close{Style.RESET_ALL} <subject>            Delete a subject's record
    {Fore.GREEN}status{Style.RESET_ALL}                     List stored subjects with stats

{Fore.CYAN}Options:{Style.RESET_ALL}
    -d, --data-dir <dir>  Data directory (default: darkjs_output)
    --subject <id>        Subject id for scan (default: derived from the url)
    --snapshot <file>     Scan a saved page snapshot (JSON) instead of fetching the url
    --method <m>          Event request method (default: GET)
    --status <n>          Event response status (default: 0)
    --kind <k>            Event kind: network | runtime (default: network)
    --format <f>          Export format: json | csv (default: json)
    --type <t>            all | endpoints | payloads | <Category>
    --search <term>       Substring search over value, source, page title and url
    --no-dedupe           Keep repeated (type, value) findings
    -o, --output <file>   Export file path
    --allow <pattern>     Add an allowlist glob (repeatable)
    --deny <pattern>      Add a denylist glob (repeatable)
    --clear-lists         Empty both allow and deny lists
    --enable <flag>       Enable dom | storage | sourcemaps | network | runtime
    --disable <flag>      Disable dom | storage | sourcemaps | network | runtime
    -v, --verbose         Verbose output
    -s, --silent          Silent mode (minimal output)

{Fore.CYAN}Examples:{Style.RESET_ALL}
    python cli.py scan https://example.com
    python cli.py scan https://example.com --snapshot page.json --subject 42
    python cli.py event 42 https://example.com/api/v1/me --status 200
    python cli.py settings --deny "*.google-analytics.com*" --disable storage
    python cli.py export --type payloads --format csv -o secrets.csv
""")


def parse_args(args):
    options = {
        'data_dir': 'darkjs_output',
        'subject': None,
        'snapshot': None,
        'method': 'GET',
        'status': 0,
        'kind': 'network',
        'format': 'json',
        'type': 'all',
        'search': None,
        'dedupe': True,
        'output': None,
        'allow': [],
        'deny': [],
        'clear_lists': False,
        'enable': [],
        'disable': [],
        'verbose': False,
        'silent': False,
    }

    valued = {
        '-d': 'data_dir', '--data-dir': 'data_dir',
        '--subject': 'subject',
        '--snapshot': 'snapshot',
        '--method': 'method',
        '--status': 'status',
        '--kind': 'kind',
        '--format': 'format',
        '--type': 'type',
        '--search': 'search',
        '-o': 'output', '--output': 'output',
    }
    repeated = {
        '--allow': 'allow',
        '--deny': 'deny',
        '--enable': 'enable',
        '--disable': 'disable',
    }

    positional = []
    i = 0
    while i < len(args):
        arg = args[i]
        if arg in valued or arg in repeated:
            if i + 1 < len(args):
                value = args[i + 1]
                if arg in valued:
                    options[valued[arg]] = value
                else:
                    options[repeated[arg]].append(value)
                i += 2
                continue
        elif arg == '--no-dedupe':
            options['dedupe'] = False
        elif arg == '--clear-lists':
            options['clear_lists'] = True
        elif arg in ['-v', '--verbose']:
            options['verbose'] = True
        elif arg in ['-s', '--silent']:
            options['silent'] = True
        elif arg in ['-h', '--help']:
            return 'help', [], options
        elif not arg.startswith('-'):
            positional.append(arg)
        i += 1

    try:
        options['status'] = int(options['status'])
    except (TypeError, ValueError):
        options['status'] = 0

    command = positional[0] if positional else None
    targets = positional[1:] if len(positional) > 1 else []

    return command, targets, options


def configure_logging(options):
    if options['verbose']:
        set_verbose(True)
    elif options['silent']:
        set_silent(True)


def build_engine(options) -> ScanEngine:
    config = get_default_config()
    config.output_dir = options['data_dir']

    kv = JsonFileStore(config.output_dir)
    store = AggregationStore(kv, max_findings=config.max_findings)
    settings_manager = SettingsManager(SettingsStore(kv))

    return ScanEngine(config, store, settings_manager, silent_mode=options['silent'])


def print_findings(findings):
    colors = {
        'Secret': Fore.RED,
        'EnvLeak': Fore.MAGENTA,
        'StorageItem': Fore.YELLOW,
        'ApiEndpoint': Fore.GREEN,
    }
    for finding in findings:
        category = finding.category.value
        color = colors.get(category, Fore.WHITE)
        print(f"  {color}[{category}]{Style.RESET_ALL} {finding.value}  {Fore.CYAN}<- {finding.source}{Style.RESET_ALL}")


def run_scan(target, options):
    print_banner()
    configure_logging(options)

    engine = build_engine(options)
    url = normalize_input(target)

    snapshot = None
    if options['snapshot']:
        try:
            snapshot = load_snapshot_file(options['snapshot'])
        except PageSourceError as e:
            logger.error(str(e))
            sys.exit(1)
        url = snapshot.url

    subject_id = options['subject'] or subject_id_for(url)

    if not options['silent']:
        print(f"\n{Fore.CYAN}[Scan]{Style.RESET_ALL}")
        print(f"  Target:  {url}")
        print(f"  Subject: {subject_id}")
        print(f"  Data:    {options['data_dir']}\n")

    try:
        report = asyncio.run(engine.scan_subject(subject_id, url=url, snapshot=snapshot))
    except KeyboardInterrupt:
        print(f"\n{Fore.YELLOW}[!] Scan interrupted{Style.RESET_ALL}")
        sys.exit(1)

    if report.failed:
        print(f"\n{Fore.RED}[-] Scan failed: {report.error}{Style.RESET_ALL}")
        sys.exit(1)

    if not options['silent']:
        scanned = sum(1 for o in report.outcomes if o.state == NodeState.SCANNED)
        failed = sum(1 for o in report.outcomes if o.state == NodeState.FETCH_FAILED)
        print(f"\n{Fore.GREEN}[+] Scan complete!{Style.RESET_ALL}")
        print(f"  Nodes scanned: {scanned}  Failed: {failed}")
        print(f"  Findings stored: {len(report.findings)}  Filtered out: {report.filtered_out}\n")
        print_findings(report.findings)

    return report


def run_event(subject_id, url, options):
    configure_logging(options)
    engine = build_engine(options)

    try:
        finding = asyncio.run(engine.record_external_finding(
            subject_id, url, method=options['method'], status=options['status'], kind=options['kind']
        ))
    except ValueError as e:
        print(f"{Fore.RED}[-] {e}{Style.RESET_ALL}")
        sys.exit(1)

    if finding is None:
        print(f"{Fore.YELLOW}[!] Event not recorded (disabled or filtered){Style.RESET_ALL}")
    else:
        print(f"{Fore.GREEN}[+] Recorded{Style.RESET_ALL}")
        print_findings([finding])


def load_records(engine, subject_id=None):
    if subject_id:
        return asyncio.run(engine.store.get_many([subject_id]))
    return asyncio.run(engine.store.all_records())


def run_show(subject_id, options):
    configure_logging(options)
    engine = build_engine(options)
    records = load_records(engine, subject_id)

    if not records:
        print(f"{Fore.YELLOW}No stored findings{Style.RESET_ALL}")
        return

    for record in records:
        print(f"\n{Fore.CYAN}{record.subject_id}{Style.RESET_ALL}  {record.page_title}  {record.page_url}")
        findings = dedupe_findings(record.findings) if options['dedupe'] else record.findings
        print_findings(findings)


def run_export(subject_id, options):
    configure_logging(options)
    engine = build_engine(options)
    records = load_records(engine, subject_id)

    rows = select_rows(records, options['type'], options['search'], options['dedupe'])

    exporter = ReportExporter(options['data_dir'])
    try:
        path = exporter.export(rows, options['format'], options['output'])
    except ValueError as e:
        print(f"{Fore.RED}[-] {e}{Style.RESET_ALL}")
        sys.exit(1)

    print(f"{Fore.GREEN}[+] {len(rows)} findings written to {path}{Style.RESET_ALL}")


def run_settings(options):
    configure_logging(options)
    engine = build_engine(options)
    manager = engine.settings_manager

    async def apply():
        current = await manager.get()
        changes = {}

        allowlist = [] if options['clear_lists'] else list(current.allowlist)
        denylist = [] if options['clear_lists'] else list(current.denylist)
        if options['clear_lists'] or options['allow']:
            changes['allowlist'] = allowlist + options['allow']
        if options['clear_lists'] or options['deny']:
            changes['denylist'] = denylist + options['deny']

        for flag, value in [(f, True) for f in options['enable']] + [(f, False) for f in options['disable']]:
            if flag not in SETTING_FLAGS:
                raise ValueError(f"Unknown setting: {flag}")
            changes[SETTING_FLAGS[flag]] = value

        if changes:
            return await manager.update(**changes)
        return current

    try:
        settings = asyncio.run(apply())
    except ValueError as e:
        print(f"{Fore.RED}[-] {e}{Style.RESET_ALL}")
        sys.exit(1)

    print(f"\n{Fore.CYAN}Settings:{Style.RESET_ALL}")
    for flag, attr in SETTING_FLAGS.items():
        enabled = getattr(settings, attr)
        state = f"{Fore.GREEN}on{Style.RESET_ALL}" if enabled else f"{Fore.RED}off{Style.RESET_ALL}"
        print(f"  {flag:<12} {state}")
    print(f"  {'allowlist':<12} {', '.join(settings.allowlist) or '(empty)'}")
    print(f"  {'denylist':<12} {', '.join(settings.denylist) or '(empty)'}")


def run_close(subject_id, options):
    configure_logging(options)
    engine = build_engine(options)
    asyncio.run(engine.close_subject(subject_id))
    print(f"{Fore.GREEN}[+] Subject {subject_id} closed{Style.RESET_ALL}")


def show_status(options):
    print_banner()
    configure_logging(options)
    engine = build_engine(options)
    records = load_records(engine)

    if not records:
        print(f"{Fore.YELLOW}No subjects stored in {options['data_dir']}{Style.RESET_ALL}")
        return

    print(f"\n{Fore.CYAN}Stored subjects:{Style.RESET_ALL}\n")
    for record in records:
        stats = compute_stats(flatten_records([record]))
        print(f"  {Fore.GREEN}{record.subject_id}{Style.RESET_ALL}  {record.page_url}")
        print(f"    total {stats['total']}  endpoints {stats['endpoints']}  "
              f"payloads {stats['payloads']}  dupes {stats['dupes']}")


def main():
    args = sys.argv[1:]

    if not args:
        print_banner()
        show_help()
        return

    command, targets, options = parse_args(args)

    if command == 'help':
        print_banner()
        show_help()
    elif command == 'scan':
        if not targets:
            print(f"{Fore.RED}[-] Error: No target specified{Style.RESET_ALL}")
            print(f"Usage: python cli.py scan <url>")
            sys.exit(1)
        run_scan(targets[0], options)
    elif command == 'event':
        if len(targets) < 2:
            print(f"{Fore.RED}[-] Error: Subject and url required{Style.RESET_ALL}")
            print(f"Usage: python cli.py event <subject> <url>")
            sys.exit(1)
        run_event(targets[0], targets[1], options)
    elif command == 'show':
        run_show(targets[0] if targets else None, options)
    elif command == 'export':
        run_export(targets[0] if targets else None, options)
    elif command == 'settings':
        run_settings(options)
    elif command == 'close':
        if not targets:
            print(f"{Fore.RED}[-] Error: No subject specified{Style.RESET_ALL}")
            sys.exit(1)
        run_close(targets[0], options)
    elif command == 'status':
        show_status(options)
    else:
        print(f"{Fore.RED}[-] Unknown command: {command}{Style.RESET_ALL}")
        show_help()


if __name__ == '__main__':
    main()
