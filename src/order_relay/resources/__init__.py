"""
Bundled resources.

Drop a PEM CA certificate named kafka-ca.crt here to have it used as the
trust anchor when no trust store is configured, or ship a trust store and
reference it as resource:<name>.

Trust stores must be PKCS#12 (.p12) or PEM. The Kafka client cannot read
Java keystores: a .jks store is still extracted, but the connection falls
back to system trust with a warning. Convert one with
`keytool -importkeystore -srcstoretype JKS -deststoretype PKCS12`.
"""
