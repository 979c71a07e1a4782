#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

import re
import sys
from collections.abc import Callable, Iterator
from typing import Any, NoReturn, TypedDict, TypeVar

from .constants import appname, str_version
from .errors import ConfigurationError


class OptionDict(TypedDict):
    dest: str
    name: str
    aliases: tuple[str, ...]
    help: str
    choices: tuple[str, ...]
    type: str
    default: str | None


OptionSpecSeq = list[str | OptionDict]
T = TypeVar('T')
bool_map = {'y': True, 'yes': True, 'true': True, 'n': False, 'no': False, 'false': False}


class CLIError(ConfigurationError):

    def __init__(self, message: str):
        super().__init__(message, 'cli')


def parse_option_spec(spec: str) -> OptionSpecSeq:
    '''Parse an option specification of the form::

        --name -n
        type=int
        default=0
        Help text, ending at the first blank line.

    Lines starting with "# " start a new group of options.'''
    NORMAL, METADATA, HELP = 'NORMAL', 'METADATA', 'HELP'
    state = NORMAL
    seq: OptionSpecSeq = []
    mpat = re.compile('([a-z]+)=(.+)')
    current_cmd: OptionDict | None = None

    for line in spec.splitlines():
        line = line.rstrip()
        if state is NORMAL:
            if not line:
                continue
            if line.startswith('# '):
                seq.append(line[2:])
                continue
            if line.startswith('--'):
                parts = line.split(' ')
                defdest = parts[0][2:].replace('-', '_')
                current_cmd = {
                    'dest': defdest, 'aliases': tuple(parts), 'help': '',
                    'choices': (), 'type': '', 'name': defdest, 'default': None,
                }
                state = METADATA
                continue
            raise ValueError(f'Invalid option spec, unexpected line: {line}')
        assert current_cmd is not None
        if state is METADATA:
            m = mpat.match(line)
            if m is None:
                state = HELP
                current_cmd['help'] += line
            else:
                k, v = m.group(1), m.group(2)
                if k == 'choices':
                    vals = tuple(x.strip() for x in v.split(','))
                    if not current_cmd['type']:
                        current_cmd['type'] = 'choices'
                    if current_cmd['type'] != 'choices':
                        raise ValueError(f'Cannot specify choices for an option of type: {current_cmd["type"]}')
                    current_cmd['choices'] = vals
                    if current_cmd['default'] is None:
                        current_cmd['default'] = vals[0]
                elif k == 'default':
                    current_cmd['default'] = v
                elif k == 'type':
                    current_cmd['type'] = v
                elif k == 'dest':
                    current_cmd['dest'] = v
        elif state is HELP:
            if line:
                spc = '' if current_cmd['help'].endswith('\n') else ' '
                current_cmd['help'] += spc + line.strip()
            else:
                state = NORMAL
                seq.append(current_cmd)
                current_cmd = None
    if current_cmd is not None:
        seq.append(current_cmd)
    return seq


def defval_for_opt(opt: OptionDict) -> Any:
    dv: Any = opt.get('default')
    typ = opt.get('type', '')
    if typ.startswith('bool-'):
        if dv is None:
            dv = typ != 'bool-set'
        else:
            dv = dv.lower() in ('true', 'yes', 'y')
    elif typ in ('int', 'float'):
        dv = (int if typ == 'int' else float)(dv or 0)
    return dv


def get_option_maps(seq: OptionSpecSeq) -> tuple[dict[str, OptionDict], dict[str, OptionDict], dict[str, Any]]:
    names_map: dict[str, OptionDict] = {}
    alias_map: dict[str, OptionDict] = {}
    values_map: dict[str, Any] = {}
    for opt in seq:
        if isinstance(opt, str):
            continue
        for alias in opt['aliases']:
            alias_map[alias] = opt
        names_map[opt['dest']] = opt
        values_map[opt['dest']] = defval_for_opt(opt)
    return names_map, alias_map, values_map


def to_bool(alias: str, x: str) -> bool:
    try:
        return bool_map[x.lower()]
    except KeyError:
        raise CLIError(f'{x} is not a valid value for {alias}. Valid values are y, yes, true, n, no, false only')


def convert_value(opt: OptionDict, alias: str, val: str) -> Any:
    typ = opt['type']
    if typ == 'int' or typ == 'float':
        try:
            return (int if typ == 'int' else float)(val)
        except ValueError:
            raise CLIError(f'{val} is not a valid number for {alias}')
    if typ == 'choices':
        if val not in opt['choices']:
            raise CLIError(f'{val} is not a valid value for {alias}. Valid values: {", ".join(opt["choices"])}')
    return val


# Help output {{{

def surround(x: str, start: int, end: int) -> str:
    if sys.stdout.isatty():
        x = f'\033[{start}m{x}\033[{end}m'
    return x


def bold(x: str) -> str:
    return surround(x, 1, 22)


def green(x: str) -> str:
    return surround(x, 32, 39)


def yellow(x: str) -> str:
    return surround(x, 33, 39)


def italic(x: str) -> str:
    return surround(x, 3, 23)


def title(x: str) -> str:
    return bold(x)


def wrap(text: str, limit: int = 80) -> Iterator[str]:
    line: list[str] = []
    length = 0
    for word in text.split():
        if line and length + 1 + len(word) > limit:
            yield ' '.join(line)
            line, length = [], 0
        length += len(word) + (1 if line else 0)
        line.append(word)
    yield ' '.join(line)


def help_defval_for_bool(otype: str) -> str:
    return 'no' if otype == 'bool-set' else 'yes'


def format_help(seq: OptionSpecSeq, usage: str, message: str, app: str, linesz: int = 76) -> str:
    blocks: list[str] = []
    a = blocks.append

    def wa(text: str, indent: int = 0) -> None:
        for para in text.split('\n'):
            for ln in wrap(para, limit=linesz - indent):
                a((' ' * indent) + ln)

    a('{}: {} [options] {}'.format(title('Usage'), bold(yellow(app)), usage))
    a('')
    wa(message)
    a('')
    a('{}:'.format(title('Options')))
    for opt in seq:
        if isinstance(opt, str):
            a(f'{title(opt)}:')
            continue
        a('  ' + ', '.join(map(green, sorted(opt['aliases'], reverse=True))))
        defval = opt.get('default')
        if (otype := opt.get('type', '')).startswith('bool-'):
            blocks[-1] += italic(f'[={help_defval_for_bool(otype)}]')
        else:
            blocks[-1] += f'''=[{italic(defval or '""')}]'''
        if opt.get('help'):
            wa(opt['help'].replace('%default', str(defval)).strip(), indent=4)
            if opt.get('choices'):
                wa('Choices: {}'.format(', '.join(opt['choices'])), indent=4)
            a('')
    return '\n'.join(blocks) + '\n\n' + version()


def version() -> str:
    return f'{italic(appname)} {green(str_version)}'
# }}}


class Options:

    do_print = True

    def __init__(self, seq: OptionSpecSeq, usage: str, message: str, app: str):
        self.seq = seq
        self.usage, self.message, self.appname = usage, message, app
        self.names_map, self.alias_map, self.values_map = get_option_maps(seq)
        self.help_called = self.version_called = False

    def handle_help(self) -> NoReturn:
        self.help_called = True
        if self.do_print:
            from .utils import screen_size_function
            try:
                linesz = min(screen_size_function()().cols, 76)
            except OSError:
                linesz = 76
            print(format_help(self.seq, self.usage, self.message, self.appname, linesz))
        raise SystemExit(0)

    def handle_version(self) -> NoReturn:
        self.version_called = True
        if self.do_print:
            print(version())
        raise SystemExit(0)


def parse_cmdline(oc: Options, ans: Any, args: list[str]) -> list[str]:
    ' Set the option values on ans and return the arguments left over after the options '
    for name, val in oc.values_map.items():
        setattr(ans, name, val)
    i = 0
    while i < len(args):
        arg = args[i]
        if arg == '--':
            return args[i + 1:]
        if not arg.startswith('-') or arg == '-':
            return args[i:]
        if arg in ('-h', '--help'):
            oc.handle_help()
        if arg in ('-v', '--version'):
            oc.handle_version()
        alias, eq, val = arg.partition('=')
        opt = oc.alias_map.get(alias)
        if opt is None:
            raise CLIError(f'{alias} is an unknown flag')
        if opt['type'].startswith('bool-'):
            setattr(ans, opt['dest'], to_bool(alias, val) if eq else opt['type'] == 'bool-set')
        else:
            if not eq:
                i += 1
                if i >= len(args):
                    raise CLIError(f'{alias} must have a value')
                val = args[i]
            setattr(ans, opt['dest'], convert_value(opt, alias, val))
        i += 1
    return []


class CLIOptions:

    def __repr__(self) -> str:
        return f'CLIOptions({vars(self)})'


def parse_args(
    args: list[str] | None = None,
    ospec: Callable[[], str] = lambda: '',
    usage: str = '',
    message: str = '',
    appname: str = appname,
    result_class: type[T] | None = None,
) -> tuple[T, list[str]]:
    ans: Any = CLIOptions() if result_class is None else result_class()
    oc = Options(parse_option_spec(ospec()), usage, message, appname)
    return ans, parse_cmdline(oc, ans, sys.argv[1:] if args is None else args)
