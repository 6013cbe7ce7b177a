#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Test suite for Research Vault directory initialization.
Tests that the storage buckets and the wizard staging area are created at startup.
"""

import os
import sys
import tempfile
import shutil
import unittest
from unittest.mock import patch

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from init_directories import (
    ensure_directory_exists,
    init_vault_directories,
    check_directory_permissions
)

BUCKETS = ("papers-covers", "papers-figures", "papers-pdf")


class TestDirectoryInitialization(unittest.TestCase):
    """Test directory initialization functions"""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp(prefix="vault_test_")

    def tearDown(self):
        if os.path.exists(self.test_dir):
            shutil.rmtree(self.test_dir)

    def test_ensure_directory_exists_creates_nested_directories(self):
        test_path = os.path.join(self.test_dir, "parent", "child", "grandchild")

        success, message = ensure_directory_exists(test_path, "nested directory")

        self.assertTrue(success)
        self.assertTrue(os.path.isdir(test_path))
        self.assertIn("Created directory", message)
        self.assertIn("(nested directory)", message)

    def test_ensure_directory_exists_handles_existing_directory(self):
        test_path = os.path.join(self.test_dir, "existing_dir")
        os.makedirs(test_path)

        success, message = ensure_directory_exists(test_path)

        self.assertTrue(success)
        self.assertIn("already exists", message)

    def test_ensure_directory_exists_handles_file_conflict(self):
        """A file sitting where a directory should be is reported, not replaced"""
        test_path = os.path.join(self.test_dir, "conflict")
        with open(test_path, 'w') as f:
            f.write("test")

        success, message = ensure_directory_exists(test_path, "test directory")

        self.assertFalse(success)
        self.assertIn("not a directory", message)
        self.assertTrue(os.path.isfile(test_path))

    @patch.dict(os.environ, {"VAULT_STORAGE_BACKEND": "local"})
    def test_local_backend_gets_one_directory_per_bucket(self):
        success, messages = init_vault_directories(base_dir=self.test_dir, storage_dir="storage",
                                                   staging_dir="staging")

        self.assertTrue(success)
        self.assertEqual(len(messages), 1 + len(BUCKETS))
        self.assertTrue(os.path.isdir(os.path.join(self.test_dir, "staging")))
        for bucket in BUCKETS:
            self.assertTrue(os.path.isdir(os.path.join(self.test_dir, "storage", bucket)))

    @patch.dict(os.environ, {"VAULT_STORAGE_BACKEND": "supabase"})
    def test_supabase_backend_only_needs_staging(self):
        success, messages = init_vault_directories(base_dir=self.test_dir, storage_dir="storage",
                                                   staging_dir="staging")

        self.assertTrue(success)
        self.assertEqual(len(messages), 1)
        self.assertFalse(os.path.exists(os.path.join(self.test_dir, "storage")))

    @patch.dict(os.environ, {"VAULT_STORAGE_BACKEND": "local"})
    def test_init_reports_failure_when_staging_is_a_file(self):
        with open(os.path.join(self.test_dir, "staging"), 'w') as f:
            f.write("in the way")

        success, messages = init_vault_directories(base_dir=self.test_dir, storage_dir="storage",
                                                   staging_dir="staging")

        self.assertFalse(success)
        self.assertTrue(any("not a directory" in m for m in messages))
        # The buckets are still created
        self.assertTrue(os.path.isdir(os.path.join(self.test_dir, "storage", "papers-pdf")))

    def test_check_directory_permissions_writable(self):
        is_writable, message = check_directory_permissions(self.test_dir)

        self.assertTrue(is_writable)
        self.assertIn("writable", message.lower())
        self.assertFalse(os.path.exists(os.path.join(self.test_dir, ".vault_write_test")))

    def test_check_directory_permissions_nonexistent(self):
        is_writable, message = check_directory_permissions(os.path.join(self.test_dir, "nonexistent"))

        self.assertFalse(is_writable)
        self.assertIn("does not exist", message)

    def test_check_directory_permissions_file_not_directory(self):
        test_path = os.path.join(self.test_dir, "file")
        with open(test_path, 'w') as f:
            f.write("test")

        is_writable, message = check_directory_permissions(test_path)

        self.assertFalse(is_writable)
        self.assertIn("not a directory", message)


if __name__ == "__main__":
    unittest.main(verbosity=2)
