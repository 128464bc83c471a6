#!/usr/bin/env python3
"""
Example demonstrating a TLS session with tlsocket.

This script connects to an HTTPS server, sends a plain HTTP/1.0 request over
the TLS stream and reports what was negotiated, including whether the peer's
certificate chain was trusted.
"""

import argparse

import tlsocket


def main():
    """Run the TLS client example."""
    parser = argparse.ArgumentParser(description="tlsocket client example")
    parser.add_argument("host", nargs="?", default="example.com")
    parser.add_argument("port", nargs="?", type=int, default=443)
    parser.add_argument("--version", default="Auto", help="e.g. TLS1.2, TLSv1_3")
    parser.add_argument("--nonblock", action="store_true")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()

    if args.debug:
        tlsocket.add_stderr_logger()

    print("TLS Client Example")
    print("==================")

    try:
        sock = tlsocket.create_connection(
            (args.host, args.port),
            version=args.version,
            timeout=10,
            allow_nonblock=args.nonblock,
        )
    except tlsocket.ConfigurationError as e:
        print(f"Bad TLS options: {e}")
        return
    except tlsocket.ConnectionTimeout as e:
        print(f"Handshake with {e.host}:{e.port} timed out")
        return

    with sock:
        print(f"\nConnected to {sock.peerhost}:{sock.peerport}")
        print(f"Protocol: {sock.negotiated_version().value}")
        print(f"Cipher: {sock.cipher()[0]}")

        outcome = sock.verification()
        if outcome:
            print("Peer certificate: trusted")
        else:
            print(f"Peer certificate: NOT trusted ({outcome.reason})")

        peer_cert = sock.peer_cert()
        if peer_cert is not None:
            print(f"Subject: {peer_cert.subject.rfc4514_string()}")
            print(f"Issuer: {peer_cert.issuer.rfc4514_string()}")

        request = f"GET / HTTP/1.0\r\nHost: {args.host}\r\n\r\n".encode("ascii")
        sock.write(request)

        response = sock.read(4096)
        if response is tlsocket.CLOSED:
            print("\nThe server closed the connection")
        else:
            status_line = response.split(b"\r\n", 1)[0].decode("latin-1")
            print(f"\nFirst response line: {status_line}")


if __name__ == "__main__":
    main()
