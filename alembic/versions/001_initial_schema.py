"""Initial schema: textbook chunks, chat history, search functions

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

Creates the nelson_textbook_chunks corpus table with its vector and
full-text indexes, the chat_sessions / chat_messages tables, and SQL
search functions mirroring the application's vector, chapter-scoped and
hybrid queries.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from pgvector.sqlalchemy import Vector

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMBEDDING_DIMENSION = 384

CHUNK_RESULT_COLUMNS = """
  id uuid,
  content text,
  chapter_title text,
  section_title text,
  page_number integer,
  chunk_index integer,
  metadata jsonb,
  created_at timestamp with time zone,
  similarity float
"""


def upgrade() -> None:
    """Create tables, indexes and search functions."""

    op.execute("CREATE EXTENSION IF NOT EXISTS vector")
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ========================================
    # Textbook chunks
    # ========================================
    op.create_table(
        "nelson_textbook_chunks",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("uuid_generate_v4()")),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("chapter_title", sa.Text(), nullable=False),
        sa.Column("section_title", sa.Text(), nullable=True),
        sa.Column("page_number", sa.Integer(), nullable=True),
        sa.Column("chunk_index", sa.Integer(), nullable=True),
        sa.Column("embedding", Vector(EMBEDDING_DIMENSION), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True),
                  server_default=sa.text("NOW()"), nullable=False),
        sa.CheckConstraint("length(trim(content)) > 0", name="chunk_content_not_empty"),
    )
    op.create_index("idx_nelson_chunks_chapter", "nelson_textbook_chunks",
                    ["chapter_title"])
    op.create_index("idx_nelson_chunks_chapter_index", "nelson_textbook_chunks",
                    ["chapter_title", "chunk_index"])

    op.execute("""
        CREATE INDEX idx_nelson_embedding_cosine ON nelson_textbook_chunks
        USING ivfflat (embedding vector_cosine_ops)
        WITH (lists = 100)
    """)
    op.execute("""
        CREATE INDEX idx_nelson_content_fts ON nelson_textbook_chunks
        USING gin (to_tsvector('english', content))
    """)

    # ========================================
    # Chat sessions and messages
    # ========================================
    op.create_table(
        "chat_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("uuid_generate_v4()")),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_message_at", sa.DateTime(timezone=True),
                  server_default=sa.text("NOW()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True),
                  server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True),
                  server_default=sa.text("NOW()"), nullable=False),
    )
    op.create_index("idx_chat_sessions_last_message_at", "chat_sessions",
                    ["last_message_at"])

    op.create_table(
        "chat_messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("uuid_generate_v4()")),
        sa.Column("session_id", postgresql.UUID(as_uuid=True),
                  sa.ForeignKey("chat_sessions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("citations", postgresql.JSONB(), nullable=True),
        sa.Column("confidence", sa.String(16), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True),
                  server_default=sa.text("NOW()"), nullable=False),
        sa.CheckConstraint("role IN ('user', 'assistant')", name="chat_message_role"),
    )
    op.create_index("idx_chat_messages_session_created", "chat_messages",
                    ["session_id", "created_at"])

    # ========================================
    # Updated_at trigger
    # ========================================
    op.execute("""
        CREATE OR REPLACE FUNCTION update_updated_at_column()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = NOW();
            RETURN NEW;
        END;
        $$ language 'plpgsql'
    """)
    op.execute("""
        CREATE TRIGGER update_chat_sessions_updated_at
        BEFORE UPDATE ON chat_sessions
        FOR EACH ROW EXECUTE FUNCTION update_updated_at_column()
    """)

    # ========================================
    # Search functions
    # ========================================
    op.execute(f"""
        CREATE OR REPLACE FUNCTION match_nelson_chunks(
          query_embedding vector({EMBEDDING_DIMENSION}),
          match_threshold float DEFAULT 0.7,
          match_count int DEFAULT 5
        )
        RETURNS TABLE ({CHUNK_RESULT_COLUMNS})
        LANGUAGE SQL STABLE
        AS $$
          SELECT c.id, c.content, c.chapter_title, c.section_title, c.page_number,
                 c.chunk_index, c.metadata, c.created_at,
                 1 - (c.embedding <=> query_embedding) AS similarity
          FROM nelson_textbook_chunks c
          WHERE c.embedding IS NOT NULL
            AND 1 - (c.embedding <=> query_embedding) > match_threshold
          ORDER BY c.embedding <=> query_embedding
          LIMIT match_count;
        $$
    """)

    op.execute(f"""
        CREATE OR REPLACE FUNCTION match_nelson_chunks_by_chapter(
          query_embedding vector({EMBEDDING_DIMENSION}),
          chapter_filter text,
          match_threshold float DEFAULT 0.7,
          match_count int DEFAULT 5
        )
        RETURNS TABLE ({CHUNK_RESULT_COLUMNS})
        LANGUAGE SQL STABLE
        AS $$
          SELECT c.id, c.content, c.chapter_title, c.section_title, c.page_number,
                 c.chunk_index, c.metadata, c.created_at,
                 1 - (c.embedding <=> query_embedding) AS similarity
          FROM nelson_textbook_chunks c
          WHERE c.embedding IS NOT NULL
            AND c.chapter_title = chapter_filter
            AND 1 - (c.embedding <=> query_embedding) > match_threshold
          ORDER BY c.embedding <=> query_embedding
          LIMIT match_count;
        $$
    """)

    op.execute(f"""
        CREATE OR REPLACE FUNCTION hybrid_search_nelson(
          query_text text,
          query_embedding vector({EMBEDDING_DIMENSION}),
          match_threshold float DEFAULT 0.7,
          match_count int DEFAULT 5
        )
        RETURNS TABLE ({CHUNK_RESULT_COLUMNS}, text_rank float)
        LANGUAGE SQL STABLE
        AS $$
          WITH vector_search AS (
            SELECT c.id, c.content, c.chapter_title, c.section_title, c.page_number,
                   c.chunk_index, c.metadata, c.created_at,
                   1 - (c.embedding <=> query_embedding) AS similarity
            FROM nelson_textbook_chunks c
            WHERE c.embedding IS NOT NULL
              AND 1 - (c.embedding <=> query_embedding) > match_threshold
          ),
          text_search AS (
            SELECT c.id,
                   ts_rank_cd(to_tsvector('english', c.content),
                              plainto_tsquery('english', query_text), 32) AS text_rank
            FROM nelson_textbook_chunks c
            WHERE to_tsvector('english', c.content) @@ plainto_tsquery('english', query_text)
          )
          SELECT v.id, v.content, v.chapter_title, v.section_title, v.page_number,
                 v.chunk_index, v.metadata, v.created_at, v.similarity,
                 COALESCE(t.text_rank, 0) AS text_rank
          FROM vector_search v
          LEFT JOIN text_search t ON v.id = t.id
          ORDER BY (v.similarity * 0.7 + COALESCE(t.text_rank, 0) * 0.3) DESC
          LIMIT match_count;
        $$
    """)


def downgrade() -> None:
    """Drop search functions, triggers and tables."""

    op.execute("DROP FUNCTION IF EXISTS hybrid_search_nelson(text, vector, float, int)")
    op.execute("DROP FUNCTION IF EXISTS match_nelson_chunks_by_chapter(vector, text, float, int)")
    op.execute("DROP FUNCTION IF EXISTS match_nelson_chunks(vector, float, int)")

    op.execute("DROP TRIGGER IF EXISTS update_chat_sessions_updated_at ON chat_sessions")
    op.execute("DROP FUNCTION IF EXISTS update_updated_at_column()")

    op.drop_table("chat_messages")
    op.drop_table("chat_sessions")
    op.drop_table("nelson_textbook_chunks")

    # Note: Extensions are not dropped to avoid affecting other databases
