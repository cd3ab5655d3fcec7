# scripts/mint_token.py
import argparse  # parse CLI args
from datetime import timedelta  # pass lifetime

from crowdstack.security import generate_pass_token  # same signer the API uses


def main(argv=None) -> None:  # main entrypoint
    parser = argparse.ArgumentParser(description="Mint a door pass token for manual scanner testing")
    parser.add_argument("--registration-id", required=True)  # registration to embed
    parser.add_argument("--event-id", required=True)  # event to embed
    parser.add_argument("--attendee-id", required=True)  # attendee to embed
    parser.add_argument("--ttl-minutes", type=int, default=60)  # token lifetime
    args = parser.parse_args(argv)  # parse args

    # QR_PASS_SECRET is read from the environment by crowdstack.config
    token = generate_pass_token(
        args.registration_id,
        args.event_id,
        args.attendee_id,
        ttl=timedelta(minutes=args.ttl_minutes),
    )
    print(token)  # output token to stdout


if __name__ == "__main__":  # run as script
    main()  # call main
