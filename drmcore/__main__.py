import logging

from pathlib import Path
from argparse import ArgumentParser, Namespace
from typing import List, Optional

from rich_argparse import RichHelpFormatter

import drmcore
from drmcore.drm.bcert import Chain, parse_chain
from drmcore.drm.exceptions import DrmError
from drmcore.drm.license import derive_and_unwrap, derive_context
from drmcore.drm.trust import verify_chain
from drmcore.utils import configure_logging, dumps, load_bytes


def chain_info(chain: Chain) -> dict:
    """
    Summarizes a parsed chain for display, leaf first.

    Opaque attributes are listed by tag only.
    """
    return {
        'version': chain.version,
        'flags': chain.flags,
        'certificates': [
            {
                'version': cert.version,
                'total_length': cert.total_length,
                'signed_length': cert.signed_length,
                'security_level': cert.security_level,
                'cert_type': cert.cert_type,
                'basic': cert.basic_info,
                'manufacturer': cert.manufacturer_info,
                'keys': list(cert.keys),
                'signature': cert.signature_info,
                'opaque_tags': [f'0x{a.tag:04X}' for a in cert.attributes if a.is_opaque]
            }
            for cert in chain
        ]
    }


def run_chain(args: Namespace, logger: logging.Logger) -> None:
    chain = parse_chain(args.file.read_bytes())
    print(dumps(chain_info(chain), beauty=True))

    if args.root_key:
        verified = verify_chain(chain, load_bytes(args.root_key))
        logger.info('Chain trusted, leaf security level: %s', verified.security_level)


def run_license(args: Namespace, logger: logging.Logger) -> None:
    enc_context, mac_context = derive_context(args.request.read_bytes())
    result = derive_and_unwrap(load_bytes(args.session_key), args.file.read_bytes(), enc_context, mac_context)

    for key in result.keys if args.all else result.content_keys:
        print(f'{key.kid.hex}:{key.key.hex()}' + (f' ({key.type.name})' if args.all else ''))

    for error in result.errors:
        logger.error('%s', error)


def main(argv: Optional[List[str]] = None) -> int:
    parser = ArgumentParser(
        prog='drmcore',
        description='Inspect certificate chains and unwrap license keys.',
        formatter_class=RichHelpFormatter)

    global_group = parser.add_argument_group('Global Options')
    global_group.add_argument('-v', '--verbose', action='store_true', help='Enable detailed logging for debugging.')
    global_group.add_argument('-l', '--log', type=Path, metavar='<dir>', help='Directory to save log files.')
    global_group.add_argument('-V', '--version', action='store_true', help='Show tool version and exit.')

    subparsers = parser.add_subparsers(dest='command', metavar='<command>')

    chain_parser = subparsers.add_parser('chain', help='Parse and optionally verify a certificate chain.', formatter_class=RichHelpFormatter)
    chain_parser.add_argument('file', type=Path, help='Raw certificate chain file.')
    chain_parser.add_argument('-r', '--root-key', type=str, metavar='<key>', help='Trusted root public key (hex, base64 or file) to verify against.')

    license_parser = subparsers.add_parser('license', help='Authenticate a license response and unwrap its keys.', formatter_class=RichHelpFormatter)
    license_parser.add_argument('file', type=Path, help='Signed license response file.')
    license_parser.add_argument('-s', '--session-key', type=str, required=True, metavar='<key>', help='Session key (hex, base64 or file).')
    license_parser.add_argument('-q', '--request', type=Path, required=True, metavar='<request>', help='License request message the response answers.')
    license_parser.add_argument('-a', '--all', action='store_true', help='Show every unwrapped key, not only content keys.')

    # Parse command-line arguments
    args = parser.parse_args(argv)

    # Handle version flag early and exit
    if args.version:
        print(f'drmcore {drmcore.__version__}')
        return 0

    if not args.command:
        parser.print_help()
        return 1

    # Set up logging (to file if specified, otherwise stdout)
    log_path = configure_logging(path=args.log, verbose=args.verbose)
    logger = logging.getLogger('drmcore')
    logger.debug('Version: %s', drmcore.__version__)

    exitcode = 0
    try:
        if args.command == 'chain':
            run_chain(args, logger)
        else:
            run_license(args, logger)
    except (DrmError, ValueError, OSError) as e:
        # Include traceback if verbose logging is enabled
        logger.critical(e, exc_info=args.verbose)
        exitcode = 1

    # Log the path to the log file if it was created
    if log_path:
        logger.info('Log file: %s' % log_path)

    return exitcode


if __name__ == '__main__':
    raise SystemExit(main())
