import unittest

from personacraft.sentiment import SentimentTagger


class TestSentimentTagger(unittest.TestCase):
    def setUp(self):
        self.tagger = SentimentTagger()

    def test_positive_text(self):
        result = self.tagger.analyze("This is a great and wonderful day")
        self.assertEqual(result.tag, "positive")
        self.assertAlmostEqual(result.confidence, 0.7)
        self.assertIn("great", result.matched_keywords)

    def test_negative_text(self):
        result = self.tagger.analyze("There is an error in the code")
        self.assertEqual(result.tag, "negative")
        self.assertEqual(result.matched_keywords, ["error"])

    def test_neutral_and_empty_text(self):
        self.assertEqual(self.tagger.analyze("The meeting is at noon").tag, "neutral")
        empty = self.tagger.analyze("")
        self.assertEqual(empty.tag, "neutral")
        self.assertEqual(empty.confidence, 0.5)

    def test_confidence_is_capped(self):
        result = self.tagger.analyze("great awesome excellent amazing wonderful fantastic perfect")
        self.assertEqual(result.confidence, 0.95)

    def test_chinese_keywords(self):
        self.assertEqual(self.tagger.analyze("这次很失望").tag, "negative")
        self.assertEqual(self.tagger.analyze("我很喜欢").tag, "positive")


if __name__ == "__main__":
    unittest.main()
