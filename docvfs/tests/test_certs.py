import socket
import ssl
from unittest import mock

from docvfs.certs import build_pool, CertPool, parse_certificates, TrustStore
from docvfs.config import CertsConfig

AMAZON_ROOT_CA_3 = """\
-----BEGIN CERTIFICATE-----
MIIBtjCCAVugAwIBAgITBmyf1XSXNmY/Owua2eiedgPySjAKBggqhkjOPQQDAjA5
MQswCQYDVQQGEwJVUzEPMA0GA1UEChMGQW1hem9uMRkwFwYDVQQDExBBbWF6b24g
Um9vdCBDQSAzMB4XDTE1MDUyNjAwMDAwMFoXDTQwMDUyNjAwMDAwMFowOTELMAkG
A1UEBhMCVVMxDzANBgNVBAoTBkFtYXpvbjEZMBcGA1UEAxMQQW1hem9uIFJvb3Qg
Q0EgMzBZMBMGByqGSM49AgEGCCqGSM49AwEHA0IABCmXp8ZBf8ANm+gBG1bG8lKl
ui2yEujSLtf6ycXYqm0fc4E7O5hrOXwzpcVOho6AF2hiRVd9RFgdszflZwjrZt6j
QjBAMA8GA1UdEwEB/wQFMAMBAf8wDgYDVR0PAQH/BAQDAgGGMB0GA1UdDgQWBBSr
ttvXBp43rDCGB5Fwx5zEGbF4wDAKBggqhkjOPQQDAgNJADBGAiEA4IWSoxe3jfkr
BqWTrBqYaGFy+uGh0PsceGCmQ5nFuMQCIQCcAu/xlJyzlvnrxir4tiz+OpAUFteM
YyRIHN8wfdVoOw==
-----END CERTIFICATE-----
"""

ISRG_ROOT_X2 = """\
-----BEGIN CERTIFICATE-----
MIICGzCCAaGgAwIBAgIQQdKd0XLq7qeAwSxs6S+HUjAKBggqhkjOPQQDAzBPMQsw
CQYDVQQGEwJVUzEpMCcGA1UEChMgSW50ZXJuZXQgU2VjdXJpdHkgUmVzZWFyY2gg
R3JvdXAxFTATBgNVBAMTDElTUkcgUm9vdCBYMjAeFw0yMDA5MDQwMDAwMDBaFw00
MDA5MTcxNjAwMDBaME8xCzAJBgNVBAYTAlVTMSkwJwYDVQQKEyBJbnRlcm5ldCBT
ZWN1cml0eSBSZXNlYXJjaCBHcm91cDEVMBMGA1UEAxMMSVNSRyBSb290IFgyMHYw
EAYHKoZIzj0CAQYFK4EEACIDYgAEzZvVn4CDCuwJSvMWSj5cz3es3mcFDR0HttwW
+1qLFNvicWDEukWVEYmO6gbf9yoWHKS5xcUy4APgHoIYOIvXRdgKam7mAHf7AlF9
ItgKbppbd9/w+kHsOdx1ymgHDB/qo0IwQDAOBgNVHQ8BAf8EBAMCAQYwDwYDVR0T
AQH/BAUwAwEB/zAdBgNVHQ4EFgQUfEKWrt5LSDv6kviejM9ti6lyN5UwCgYIKoZI
zj0EAwMDaAAwZQIwe3lORlCEwkSHRhtFcP9Ymd70/aTSVaYgLXTWNLxBo1BfASdW
tL4ndQavEi51mI38AjEAi/V3bNTIZargCyzuFJ0nN6T5U6VR5CmD1/iQMVtCnwr1
/q4AaOeMSQ+2b1tbFfLn
-----END CERTIFICATE-----
"""

AMAZON_DER = ssl.PEM_cert_to_DER_cert(AMAZON_ROOT_CA_3)
ISRG_DER = ssl.PEM_cert_to_DER_cert(ISRG_ROOT_X2)


def test_parse_pem():
    assert parse_certificates(AMAZON_ROOT_CA_3.encode()) == [AMAZON_DER]


def test_parse_pem_bundle():
    bundle = (AMAZON_ROOT_CA_3 + "\n" + ISRG_ROOT_X2).encode()

    assert parse_certificates(bundle) == [AMAZON_DER, ISRG_DER]


def test_parse_der():
    assert parse_certificates(AMAZON_DER) == [AMAZON_DER]


def test_parse_skips_malformed_blocks():
    garbage = "-----BEGIN CERTIFICATE-----\n!!!notbase64\n-----END CERTIFICATE-----\n"
    bogus = "-----BEGIN CERTIFICATE-----\nYWJjZA==\n-----END CERTIFICATE-----\n"

    bundle = (garbage + bogus + ISRG_ROOT_X2).encode()

    assert parse_certificates(bundle) == [ISRG_DER]


def test_parse_garbage():
    assert parse_certificates(b"") == []
    assert parse_certificates(b"not a certificate") == []


def test_build_pool(tmp_path):
    system = tmp_path / "system"
    system.mkdir()
    (system / "amazon.pem").write_text(AMAZON_ROOT_CA_3)
    (system / "isrg.pem").write_text(ISRG_ROOT_X2)
    (system / "readme.txt").write_text("not a certificate")

    pool = build_pool([str(system)], None)

    assert pool.file_names() == ["amazon.pem", "isrg.pem"]
    assert pool.certificates() == [AMAZON_DER, ISRG_DER]
    assert len(pool) == 2
    assert AMAZON_DER in pool


def test_build_pool_removes_by_name(tmp_path):
    system = tmp_path / "system"
    system.mkdir()
    (system / "amazon.pem").write_text(AMAZON_ROOT_CA_3)
    (system / "isrg.pem").write_text(ISRG_ROOT_X2)

    removed = tmp_path / "removed"
    removed.mkdir()
    (removed / "amazon.pem").write_text("")

    pool = build_pool([str(system)], str(removed))

    assert pool.file_names() == ["isrg.pem"]
    assert AMAZON_DER not in pool


def test_build_pool_first_directory_wins(tmp_path):
    first = tmp_path / "first"
    second = tmp_path / "second"
    first.mkdir()
    second.mkdir()

    (first / "root.pem").write_text(AMAZON_ROOT_CA_3)
    (second / "root.pem").write_text(ISRG_ROOT_X2)
    (second / "user.crt").write_bytes(ISRG_DER)

    pool = build_pool([str(first), str(second)], None)

    assert pool.certs == {"root.pem": (AMAZON_DER,), "user.crt": (ISRG_DER,)}


def test_build_pool_missing_directories(tmp_path):
    pool = build_pool([str(tmp_path / "missing")], str(tmp_path / "missing"))

    assert len(pool) == 0


def test_trust_store_rebuild(tmp_path):
    added = tmp_path / "added"
    added.mkdir()

    store = TrustStore.from_config(
        CertsConfig(add_dirs=[str(added)], remove_dir=str(tmp_path / "removed"))
    )

    assert len(store.pool) == 0
    old_pool = store.rebuild()
    assert len(old_pool) == 0

    (added / "amazon.pem").write_text(AMAZON_ROOT_CA_3)

    new_pool = store.rebuild()

    # Previously returned pools are never modified
    assert len(old_pool) == 0
    assert store.pool is new_pool
    assert AMAZON_DER in store.pool


def test_ssl_context(tmp_path):
    (tmp_path / "amazon.pem").write_text(AMAZON_ROOT_CA_3)

    store = TrustStore([str(tmp_path)], None)
    store.rebuild()

    context = store.ssl_context()

    assert context.verify_mode == ssl.CERT_REQUIRED
    assert context.check_hostname
    assert context.cert_store_stats()["x509_ca"] == 1

    # Memoized until the pool is replaced
    assert store.ssl_context() is context

    store.rebuild()
    assert store.ssl_context() is not context


def test_ssl_context_empty_pool():
    store = TrustStore([], None)

    assert store.ssl_context().cert_store_stats()["x509_ca"] == 0


def test_wrap_socket():
    store = TrustStore([], None)
    sock = mock.Mock(spec=socket.socket)

    with mock.patch.object(ssl.SSLContext, "wrap_socket") as wrap:
        store.wrap_socket(sock, "example.com")

    wrap.assert_called_once_with(sock, server_hostname="example.com")


def test_empty_pool():
    pool = CertPool()

    assert len(pool) == 0
    assert pool.file_names() == []
    assert pool.certificates() == []
