import socket


def send_raw(address, payload, chunks=None):
    """Send raw request bytes and return everything the server writes back."""
    host, port = address
    with socket.create_connection((host, port), timeout=5) as sock:
        if chunks:
            for chunk in chunks:
                sock.sendall(chunk)
        else:
            sock.sendall(payload)
        received = b""
        while True:
            data = sock.recv(4096)
            if not data:
                break
            received += data
    return received


def split_response(raw):
    head, _, body = raw.partition(b"\r\n\r\n")
    lines = head.decode("iso-8859-1").split("\r\n")
    status = int(lines[0].split(" ")[1])
    headers = dict(line.split(": ", 1) for line in lines[1:])
    return status, headers, body

