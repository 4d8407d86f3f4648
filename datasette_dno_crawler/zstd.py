import zstandard

compressor = zstandard.ZstdCompressor(level=9)
decompressor = zstandard.ZstdDecompressor()

def store_content(conn, content_hash, content, content_type):
    """Store a fetched body under its hash. Identical bodies are stored once."""
    if isinstance(content, str):
        content = content.encode('utf-8')

    exists, = conn.execute('SELECT EXISTS(SELECT * FROM dcr_fetch_cache WHERE content_hash = ?)', [content_hash]).fetchone()
    if exists:
        return False

    obj = compressor.compress(content)
    conn.execute(
        'INSERT OR IGNORE INTO dcr_fetch_cache(content_hash, content_type, size, object) VALUES (?, ?, ?, ?)',
        [content_hash, content_type, len(content), obj]
    )
    return True

def load_content(conn, content_hash):
    row = conn.execute('SELECT object FROM dcr_fetch_cache WHERE content_hash = ?', [content_hash]).fetchone()

    if not row:
        return None

    return decompressor.decompress(row[0])
