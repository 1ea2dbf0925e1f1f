"""
Bill Scanner Application - Main Entry Point
Upload or photograph a bill and read its merchant, date and total.
"""

import streamlit as st
import sys
import logging
from pathlib import Path

# Add src directory to Python path
src_path = Path(__file__).parent / "src"
sys.path.insert(0, str(src_path))

from bill_core.config import get_settings
from bill_core.logging_config import setup_logging
from bill_core.pipeline import BillProcessor
from bill_ui.components import (
    setup_sidebar,
    display_input_tabs,
    display_processing_result,
    reset_session
)

settings = get_settings()
setup_logging(settings.log_level, settings.log_file)

logger = logging.getLogger(__name__)


def initialize_app():
    """Initialize session state for the application."""
    if 'bill_processor' not in st.session_state:
        st.session_state.bill_processor = BillProcessor(settings)
        if not st.session_state.bill_processor.ocr_engine.is_available():
            st.warning("Tesseract OCR is not installed. Only PDFs with a text layer can be processed.")

    if 'last_result' not in st.session_state:
        st.session_state.last_result = None

    if 'image_preview' not in st.session_state:
        st.session_state.image_preview = None

    logger.info("Application initialized successfully")


def main():
    """Main application function."""
    st.set_page_config(
        page_title="Bill Scanner",
        page_icon="🧾",
        layout="centered",
        initial_sidebar_state="expanded"
    )

    initialize_app()

    st.title("🧾 Bill Scanner")
    st.markdown("Upload a bill or take a photo to extract the merchant, date and total.")
    st.markdown("---")

    setup_sidebar()

    result = st.session_state.last_result

    if result is None:
        display_input_tabs()
        result = st.session_state.last_result

    if result is not None:
        display_processing_result(result, st.session_state.image_preview)

        if st.button("Process another bill"):
            reset_session()
            st.rerun()


if __name__ == "__main__":
    main()
